"""Tests for instruction_spine.usage.buckets: rotation, conservation, persistence."""

from __future__ import annotations

import json

import pytest

from instruction_spine.usage.buckets import (
    RETIRED_WINDOW,
    UsageAggregator,
    UsageBucket,
    UsageBucketContainer,
    UsageEvent,
)


class Ticker:
    """Epoch-seconds clock moved by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def ticker() -> Ticker:
    return Ticker()


def _container(ticker: Ticker, **kwargs) -> UsageBucketContainer:
    kwargs.setdefault("bucket_size_minutes", 1)
    kwargs.setdefault("bucket_count", 3)
    return UsageBucketContainer(clock=ticker, **kwargs)


class TestUsageBucket:
    def test_add_and_summary(self):
        bucket = UsageBucket(window=2, size_seconds=60.0)
        bucket.add(UsageEvent("get", duration_ms=2.0))
        bucket.add(UsageEvent("get", success=False, error_code="NOT_FOUND", duration_ms=1.0))
        bucket.add(UsageEvent("add"))
        summary = bucket.summary()
        assert summary["operationCounts"] == {"add": 1, "get": 2}
        assert (summary["successCount"], summary["failureCount"]) == (2, 1)
        assert (summary["start"], summary["end"]) == (120.0, 180.0)
        assert summary["totalDurationMs"] == 3.0

    def test_entries_bounded_counters_not(self):
        bucket = UsageBucket(window=0, size_seconds=60.0, max_entries=2)
        for _ in range(5):
            bucket.add(UsageEvent("list"))
        assert len(bucket.entries) == 2
        assert bucket.total_entries == 5

    def test_round_trip(self):
        bucket = UsageBucket(window=1, size_seconds=60.0)
        bucket.add(UsageEvent("get", instruction_id="a", timestamp=61.0))
        restored = UsageBucket.from_dict(bucket.to_dict(), size_seconds=60.0, max_entries=10)
        assert restored.summary() == bucket.summary()
        assert restored.entries[0].instruction_id == "a"


class TestContainer:
    def test_invalid_geometry(self):
        with pytest.raises(ValueError):
            UsageBucketContainer(bucket_size_minutes=0)
        with pytest.raises(ValueError):
            UsageBucketContainer(bucket_count=0)

    def test_lazy_rotation(self, ticker):
        container = _container(ticker)
        container.record_usage(UsageEvent("list"))
        ticker.now = 61.0
        container.record_usage(UsageEvent("get"))
        assert container.rotation_count == 1
        assert [b.window for b in container.buckets()] == [0, 1]

    def test_ring_overflow_retires_and_conserves(self, ticker):
        container = _container(ticker, bucket_count=3)
        calls = 0
        for minute in range(10):
            ticker.now = minute * 60.0 + 1
            for _ in range(minute + 1):
                container.record_usage(UsageEvent("list"))
                calls += 1
        assert len(container.buckets()) == 3
        assert container.rotation_count == 9
        assert container.total_entries == calls
        assert container.retired.total_entries == calls - (8 + 9 + 10)
        assert container.metrics()["totalOperations"] == calls

    def test_late_event_lands_in_its_bucket(self, ticker):
        container = _container(ticker)
        container.record_usage(UsageEvent("a"))
        ticker.now = 61.0
        container.record_usage(UsageEvent("b"))
        container.record_usage(UsageEvent("late", timestamp=30.0))
        assert container.ring[0].operation_counts == {"a": 1, "late": 1}
        assert container.total_entries == 3

    def test_very_late_event_retired(self, ticker):
        container = _container(ticker)
        ticker.now = 600.0
        container.record_usage(UsageEvent("now"))
        container.record_usage(UsageEvent("ancient", timestamp=5.0))
        assert container.retired.operation_counts == {"ancient": 1}
        assert container.total_entries == 2

    def test_late_event_in_gap_slots_bucket(self, ticker):
        container = _container(ticker, bucket_count=4)
        container.record_usage(UsageEvent("w0"))
        ticker.now = 185.0
        container.record_usage(UsageEvent("w3"))
        container.record_usage(UsageEvent("w1", timestamp=70.0))
        assert [b.window for b in container.buckets()] == [0, 1, 3]
        assert container.total_entries == 3

    def test_late_event_before_any_rotation(self, ticker):
        container = _container(ticker, bucket_count=3)
        ticker.now = 125.0
        container.record_usage(UsageEvent("w2"))
        container.record_usage(UsageEvent("w1", timestamp=70.0))
        assert [b.window for b in container.buckets()] == [1, 2]
        assert container.retired.total_entries == 0

    def test_late_event_older_than_ring_but_retained(self, ticker):
        container = _container(ticker, bucket_count=4)
        ticker.now = 125.0
        container.record_usage(UsageEvent("w2"))
        ticker.now = 185.0
        container.record_usage(UsageEvent("w3"))
        container.record_usage(UsageEvent("w0", timestamp=10.0))
        assert [b.window for b in container.buckets()] == [0, 2, 3]
        assert container.ring[0].operation_counts == {"w0": 1}
        assert container.retired.total_entries == 0
        assert container.total_entries == 3

    def test_maybe_rotate(self, ticker):
        container = _container(ticker)
        assert container.maybe_rotate() is False
        container.record_usage(UsageEvent("a"))
        assert container.maybe_rotate() is False
        ticker.now = 130.0
        assert container.maybe_rotate() is True
        assert container.current.window == 2

    def test_force_rotation(self, ticker):
        container = _container(ticker)
        container.force_rotation()
        assert container.current is not None and container.rotation_count == 0
        container.force_rotation()
        container.force_rotation()
        assert container.rotation_count == 2
        assert container.current.window == 2

    def test_entries_in_range(self, ticker):
        container = _container(ticker)
        for t in (10.0, 50.0, 70.0, 130.0):
            ticker.now = t
            container.record_usage(UsageEvent("op"))
        assert [e.timestamp for e in container.entries_in_range(40.0, 80.0)] == [50.0, 70.0]

    def test_metrics_empty(self, ticker):
        assert _container(ticker).metrics() == {
            "rotationCount": 0,
            "totalOperations": 0,
            "successRate": 1.0,
            "avgDurationMs": 0.0,
        }

    def test_container_hash_changes(self, ticker):
        container = _container(ticker)
        before = container.container_hash()
        container.record_usage(UsageEvent("a"))
        assert container.container_hash() != before
        assert container.stats()["containerHash"] == container.container_hash()
        assert container.stats()["retired"]["window"] == RETIRED_WINDOW

    def test_restore(self, ticker):
        container = _container(ticker)
        for t in (0.0, 61.0, 122.0, 183.0):
            ticker.now = t
            container.record_usage(UsageEvent("op"))
        clone = _container(ticker)
        clone.restore(json.loads(json.dumps(container.to_dict())))
        assert clone.container_hash() == container.container_hash()
        assert clone.rotation_count == container.rotation_count

    def test_restore_ignores_other_geometry(self, ticker):
        container = _container(ticker)
        container.record_usage(UsageEvent("op"))
        other = _container(ticker, bucket_size_minutes=5)
        other.restore(container.to_dict())
        assert other.total_entries == 0


class TestAggregator:
    @pytest.mark.asyncio
    async def test_flush_and_restore_with_backup(self, tmp_path, ticker):
        path = tmp_path / "usage.json"
        aggregator = UsageAggregator(_container(ticker), path=path)
        aggregator.record("list")
        await aggregator.flush()
        aggregator.record("get", instruction_id="a", success=False, error_code="NOT_FOUND")
        await aggregator.flush()
        assert (tmp_path / "usage.json.bak").exists()

        path.write_text("{corrupt")
        fresh = UsageAggregator(_container(ticker), path=path)
        assert await fresh.restore() is True
        assert fresh.container.total_entries == 1

    @pytest.mark.asyncio
    async def test_no_path(self, ticker):
        aggregator = UsageAggregator(_container(ticker))
        await aggregator.flush()
        assert await aggregator.restore() is False

    def test_stats(self, ticker):
        aggregator = UsageAggregator(_container(ticker))
        aggregator.record("get", duration_ms=4.0)
        aggregator.record("get", success=False, duration_ms=2.0)
        metrics = aggregator.stats()["metrics"]
        assert metrics["successRate"] == 0.5
        assert metrics["avgDurationMs"] == 3.0

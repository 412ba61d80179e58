"""
Rotating time-windowed usage buckets.

Manifesto:
    Observability must never slow the request path.  Recording a usage
    event is an O(1) in-memory update; rotation is lazy (driven by the next
    event, or an explicit poll) so the core needs no background scheduler.
    The clock is injected so tests can walk time forward deterministically.

Architecture:
    ::

        record_usage(event)
             │   window = floor(timestamp / bucket_seconds)
             ▼
        window > current.window ──► rotate: current → ring, rotationCount += 1
             │                              ring full → oldest absorbed into
             │                              ``retired`` aggregate
        window < current.window ──► late event: its ring bucket, else retired
             ▼
        bucket.add(event)   operationCounts / success / failure / duration

        Invariant: retired.total + Σ ring.total + current.total
                   == number of record_usage calls

Features:
    - **Injectable clock:** ``clock() -> epoch seconds``
    - **Bounded raw entries:** ``max_entries_per_bucket`` per bucket; the
      counters are never bounded
    - **Container hash:** digest over the stable JSON of all buckets
    - **Sidecar persistence:** atomic JSON file with a ``.bak`` of the
      previous version

Examples:
    >>> now = [0.0]
    >>> container = UsageBucketContainer(bucket_size_minutes=1, bucket_count=3, clock=lambda: now[0])
    >>> container.record_usage(UsageEvent("list"))
    >>> now[0] = 61.0
    >>> container.record_usage(UsageEvent("get"))
    >>> container.rotation_count, container.total_entries
    (1, 2)

Tags:
    usage, metrics, time-window, rotation, observability, instruction-spine

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import asyncio
import json
import math
import shutil
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from instruction_spine.catalog.storage import atomic_write_text, dump_json
from instruction_spine.core.hashing import sha256_hex, stable_json
from instruction_spine.core.logging import get_logger
from instruction_spine.core.settings import CatalogSettings

logger = get_logger(__name__)

Clock = Callable[[], float]

RETIRED_WINDOW = -1


@dataclass(slots=True)
class UsageEvent:
    """One completed catalog operation."""

    operation: str
    instruction_id: str | None = None
    duration_ms: float = 0.0
    success: bool = True
    error_code: str | None = None
    timestamp: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "instructionId": self.instruction_id,
            "durationMs": self.duration_ms,
            "success": self.success,
            "errorCode": self.error_code,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageEvent:
        return cls(
            operation=str(data.get("operation", "")),
            instruction_id=data.get("instructionId"),
            duration_ms=float(data.get("durationMs", 0.0)),
            success=bool(data.get("success", True)),
            error_code=data.get("errorCode"),
            timestamp=data.get("timestamp"),
        )


@dataclass
class UsageBucket:
    """Counters for one fixed-width time window."""

    window: int
    size_seconds: float
    max_entries: int = 1000
    operation_counts: dict[str, int] = field(default_factory=dict)
    success_count: int = 0
    failure_count: int = 0
    total_entries: int = 0
    total_duration_ms: float = 0.0
    entries: deque[UsageEvent] = field(init=False)

    def __post_init__(self) -> None:
        self.entries = deque(maxlen=self.max_entries)

    @property
    def start(self) -> float:
        return self.window * self.size_seconds

    @property
    def end(self) -> float:
        return (self.window + 1) * self.size_seconds

    def add(self, event: UsageEvent) -> None:
        self.operation_counts[event.operation] = self.operation_counts.get(event.operation, 0) + 1
        if event.success:
            self.success_count += 1
        else:
            self.failure_count += 1
        self.total_entries += 1
        self.total_duration_ms += event.duration_ms
        if self.max_entries:
            self.entries.append(event)

    def absorb(self, other: UsageBucket) -> None:
        """Roll another bucket's counters into this one (raw entries dropped)."""
        for op, count in other.operation_counts.items():
            self.operation_counts[op] = self.operation_counts.get(op, 0) + count
        self.success_count += other.success_count
        self.failure_count += other.failure_count
        self.total_entries += other.total_entries
        self.total_duration_ms += other.total_duration_ms

    def summary(self) -> dict[str, Any]:
        return {
            "window": self.window,
            "start": self.start if self.window != RETIRED_WINDOW else None,
            "end": self.end if self.window != RETIRED_WINDOW else None,
            "operationCounts": dict(sorted(self.operation_counts.items())),
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "totalEntries": self.total_entries,
            "totalDurationMs": round(self.total_duration_ms, 3),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.summary()
        data["entries"] = [e.to_dict() for e in self.entries]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, size_seconds: float, max_entries: int) -> UsageBucket:
        bucket = cls(window=int(data["window"]), size_seconds=size_seconds, max_entries=max_entries)
        bucket.operation_counts = {str(k): int(v) for k, v in data.get("operationCounts", {}).items()}
        bucket.success_count = int(data.get("successCount", 0))
        bucket.failure_count = int(data.get("failureCount", 0))
        bucket.total_entries = int(data.get("totalEntries", 0))
        bucket.total_duration_ms = float(data.get("totalDurationMs", 0.0))
        for entry in data.get("entries", []):
            bucket.entries.append(UsageEvent.from_dict(entry))
        return bucket


class UsageBucketContainer:
    """Current bucket + ring of past buckets + retired aggregate."""

    def __init__(
        self,
        *,
        bucket_size_minutes: int = 60,
        bucket_count: int = 24,
        max_entries_per_bucket: int = 1000,
        clock: Clock = time.time,
    ):
        if bucket_size_minutes < 1 or bucket_count < 1:
            raise ValueError("bucket_size_minutes and bucket_count must be >= 1")
        self.bucket_size_minutes = bucket_size_minutes
        self.bucket_count = bucket_count
        self.max_entries_per_bucket = max_entries_per_bucket
        self.bucket_seconds = bucket_size_minutes * 60.0
        self._clock = clock
        self.current: UsageBucket | None = None
        self.ring: deque[UsageBucket] = deque()
        self.retired = self._new_bucket(RETIRED_WINDOW, max_entries=0)
        self.rotation_count = 0

    @classmethod
    def from_settings(cls, settings: CatalogSettings, *, clock: Clock = time.time) -> UsageBucketContainer:
        return cls(
            bucket_size_minutes=settings.bucket_size_minutes,
            bucket_count=settings.bucket_count,
            max_entries_per_bucket=settings.max_entries_per_bucket,
            clock=clock,
        )

    # ── Recording ────────────────────────────────────────────────────

    def window_for(self, timestamp: float) -> int:
        return math.floor(timestamp / self.bucket_seconds)

    def record_usage(self, event: UsageEvent) -> None:
        if event.timestamp is None:
            event.timestamp = self._clock()
        window = self.window_for(event.timestamp)

        if self.current is None:
            self.current = self._new_bucket(window)
        elif window > self.current.window:
            self._rotate(window)
        elif window < self.current.window:
            self._bucket_for_past(window).add(event)
            return
        self.current.add(event)

    def maybe_rotate(self) -> bool:
        """Rotate if wall-clock time has left the current window (explicit poll)."""
        if self.current is None:
            return False
        window = self.window_for(self._clock())
        if window <= self.current.window:
            return False
        self._rotate(window)
        return True

    def force_rotation(self) -> None:
        window = self.window_for(self._clock())
        if self.current is None:
            self.current = self._new_bucket(window)
            return
        self._rotate(max(window, self.current.window + 1))

    def _rotate(self, window: int) -> None:
        assert self.current is not None
        self.ring.append(self.current)
        while len(self.ring) > self.bucket_count - 1:
            self.retired.absorb(self.ring.popleft())
        self.current = self._new_bucket(window)
        self.rotation_count += 1

    def _bucket_for_past(self, window: int) -> UsageBucket:
        assert self.current is not None
        for bucket in self.ring:
            if bucket.window == window:
                return bucket
        if window < self.current.window - (self.bucket_count - 1):
            return self.retired
        # inside the retained span but never opened: slot a bucket in window order
        bucket = self._new_bucket(window)
        self.ring = deque(sorted([*self.ring, bucket], key=lambda b: b.window))
        while len(self.ring) > self.bucket_count - 1:
            self.retired.absorb(self.ring.popleft())
        return bucket if any(b is bucket for b in self.ring) else self.retired

    def _new_bucket(self, window: int, *, max_entries: int | None = None) -> UsageBucket:
        return UsageBucket(
            window=window,
            size_seconds=self.bucket_seconds,
            max_entries=self.max_entries_per_bucket if max_entries is None else max_entries,
        )

    # ── Views ────────────────────────────────────────────────────────

    def buckets(self) -> list[UsageBucket]:
        """Retained buckets, oldest first (ring then current)."""
        return [*self.ring, *([self.current] if self.current else [])]

    @property
    def total_entries(self) -> int:
        return self.retired.total_entries + sum(b.total_entries for b in self.buckets())

    def metrics(self) -> dict[str, Any]:
        everything = [self.retired, *self.buckets()]
        total = sum(b.total_entries for b in everything)
        successes = sum(b.success_count for b in everything)
        duration = sum(b.total_duration_ms for b in everything)
        return {
            "rotationCount": self.rotation_count,
            "totalOperations": total,
            "successRate": successes / total if total else 1.0,
            "avgDurationMs": duration / total if total else 0.0,
        }

    def entries_in_range(self, start: float, end: float) -> list[UsageEvent]:
        """Raw events with ``start <= timestamp < end`` still held in memory."""
        return [
            e
            for b in self.buckets()
            if b.end > start and b.start < end
            for e in b.entries
            if e.timestamp is not None and start <= e.timestamp < end
        ]

    def container_hash(self) -> str:
        return sha256_hex(stable_json([b.summary() for b in [self.retired, *self.buckets()]]))

    def stats(self) -> dict[str, Any]:
        return {
            "config": {
                "bucketSizeMinutes": self.bucket_size_minutes,
                "bucketCount": self.bucket_count,
                "maxEntriesPerBucket": self.max_entries_per_bucket,
            },
            "metrics": self.metrics(),
            "buckets": [b.summary() for b in self.buckets()],
            "retired": self.retired.summary(),
            "containerHash": self.container_hash(),
        }

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucketSizeMinutes": self.bucket_size_minutes,
            "bucketCount": self.bucket_count,
            "rotationCount": self.rotation_count,
            "current": self.current.to_dict() if self.current else None,
            "ring": [b.to_dict() for b in self.ring],
            "retired": self.retired.summary(),
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Load persisted state; geometry mismatches discard the saved buckets."""
        if data.get("bucketSizeMinutes") != self.bucket_size_minutes:
            logger.warning("usage.geometry_changed", saved=data.get("bucketSizeMinutes"))
            return

        def build(d: dict[str, Any], max_entries: int | None = None) -> UsageBucket:
            return UsageBucket.from_dict(
                d,
                size_seconds=self.bucket_seconds,
                max_entries=self.max_entries_per_bucket if max_entries is None else max_entries,
            )

        self.rotation_count = int(data.get("rotationCount", 0))
        self.current = build(data["current"]) if data.get("current") else None
        self.ring = deque(build(b) for b in data.get("ring", []))
        self.retired = build(data.get("retired") or {"window": RETIRED_WINDOW}, max_entries=0)
        while len(self.ring) > self.bucket_count - 1:
            self.retired.absorb(self.ring.popleft())


class UsageAggregator:
    """Fire-and-forget front for a ``UsageBucketContainer`` with optional sidecar."""

    def __init__(self, container: UsageBucketContainer, *, path: Path | None = None):
        self.container = container
        self.path = path

    @classmethod
    def from_settings(cls, settings: CatalogSettings, *, clock: Clock = time.time) -> UsageAggregator:
        return cls(UsageBucketContainer.from_settings(settings, clock=clock), path=settings.usage_file_path)

    def record(
        self,
        operation: str,
        *,
        instruction_id: str | None = None,
        duration_ms: float = 0.0,
        success: bool = True,
        error_code: str | None = None,
    ) -> None:
        self.container.record_usage(
            UsageEvent(
                operation=operation,
                instruction_id=instruction_id,
                duration_ms=duration_ms,
                success=success,
                error_code=error_code,
            )
        )

    def stats(self) -> dict[str, Any]:
        return self.container.stats()

    async def flush(self) -> None:
        if self.path is None:
            return
        await asyncio.to_thread(self._flush_sync, dump_json(self.container.to_dict()))

    async def restore(self) -> bool:
        if self.path is None:
            return False
        data = await asyncio.to_thread(self._read_sync)
        if data is None:
            return False
        self.container.restore(data)
        return True

    def _flush_sync(self, text: str) -> None:
        assert self.path is not None
        if self.path.exists():
            shutil.copyfile(self.path, self.path.with_name(self.path.name + ".bak"))
        atomic_write_text(self.path, text)

    def _read_sync(self) -> dict[str, Any] | None:
        assert self.path is not None
        for candidate in (self.path, self.path.with_name(self.path.name + ".bak")):
            if not candidate.exists():
                continue
            try:
                data = json.loads(candidate.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("usage.sidecar_unreadable", path=str(candidate), error=str(exc))
                continue
            if isinstance(data, dict):
                return data
        return None

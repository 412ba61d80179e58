"""Tests for instruction_spine.catalog.queries: read payloads."""

from __future__ import annotations

import pytest

from instruction_spine.catalog import queries
from instruction_spine.catalog.classifier import GovernanceClassifier
from instruction_spine.core.errors import ValidationFailedError


@pytest.fixture
def records(clock):
    classifier = GovernanceClassifier(clock=clock)
    raw = [
        {"id": "a", "title": "Alpha rules", "body": "Use TLS everywhere.", "priority": 90,
         "categories": ["security", "network"], "owner": "sec", "requirement": "mandatory"},
        {"id": "b", "title": "Beta", "body": "Format with black.", "priority": 40, "categories": ["style"]},
        {"id": "c", "title": "Gamma", "body": "Rotate secrets monthly.", "priority": 65,
         "categories": ["security"], "requirement": "recommended"},
    ]
    return [classifier.normalize(r) for r in raw]


class TestSearch:
    def test_case_insensitive(self, records):
        assert [r.id for r in queries.search(records, "tls")] == ["a"]
        assert [r.id for r in queries.search(records, "GAMMA")] == ["c"]

    def test_empty_returns_all(self, records):
        assert len(queries.search(records, "  ")) == 3


class TestQuery:
    def test_categories_any_and_all(self, records):
        result = queries.query(records, {"categoriesAny": ["security"]}, "h")
        assert [i["id"] for i in result["items"]] == ["a", "c"]
        result = queries.query(records, {"categoriesAll": ["security", "network"]}, "h")
        assert [i["id"] for i in result["items"]] == ["a"]

    def test_exclude_and_priority_range(self, records):
        result = queries.query(records, {"excludeCategories": ["style"], "priorityMin": 70}, "h")
        assert [i["id"] for i in result["items"]] == ["a"]
        assert result["applied"] == {"excludeCategories": ["style"], "priorityMin": 70}

    def test_tiers_requirements_text(self, records):
        assert queries.query(records, {"priorityTiers": ["p2"]}, "h")["total"] == 1
        assert queries.query(records, {"requirements": ["mandatory"]}, "h")["items"][0]["id"] == "a"
        assert queries.query(records, {"text": "black"}, "h")["items"][0]["id"] == "b"

    def test_pagination(self, records):
        result = queries.query(records, {"limit": 2, "offset": 1}, "h")
        assert result["total"] == 3
        assert result["count"] == 2
        assert [i["id"] for i in result["items"]] == ["b", "c"]

    def test_defaults(self, records):
        result = queries.query(records, {}, "h")
        assert (result["offset"], result["limit"], result["applied"]) == (0, queries.DEFAULT_LIMIT, {})

    def test_invalid_params_collect_reasons(self, records):
        with pytest.raises(ValidationFailedError) as exc_info:
            queries.query(records, {"limit": 0, "offset": -1, "priorityMin": "high", "categoriesAny": [1]}, "h")
        assert len(exc_info.value.reasons) == 4


class TestCategories:
    def test_counts_sorted(self, records):
        assert queries.categories(records) == {
            "count": 3,
            "categories": [
                {"name": "network", "count": 1},
                {"name": "security", "count": 2},
                {"name": "style", "count": 1},
            ],
        }


class TestDiff:
    def test_up_to_date(self, records):
        assert queries.diff(records, "h", {"clientHash": "h"}) == {"upToDate": True, "hash": "h"}

    def test_added_updated_removed(self, records):
        known = [
            {"id": "a", "sourceHash": records[0].source_hash},
            {"id": "b", "sourceHash": "stale"},
            {"id": "z", "sourceHash": "x"},
        ]
        result = queries.diff(records, "h", {"clientHash": "old", "known": known})
        assert [i["id"] for i in result["added"]] == ["c"]
        assert [i["id"] for i in result["updated"]] == ["b"]
        assert result["removed"] == ["z"]

    def test_no_known_means_everything_added(self, records):
        assert len(queries.diff(records, "h", {})["added"]) == 3

    def test_known_must_be_list(self, records):
        with pytest.raises(ValidationFailedError):
            queries.diff(records, "h", {"known": "a"})


class TestExport:
    def test_subset_meta_only(self, records):
        result = queries.export(records, "h", {"ids": ["b", "missing"], "metaOnly": True})
        assert result["count"] == 1
        assert "body" not in result["items"][0]
        assert result["items"][0]["sourceHash"] == records[1].source_hash

    def test_full(self, records):
        result = queries.export(records, "h", {})
        assert result["count"] == 3
        assert result["items"][0]["body"] == "Use TLS everywhere."

    def test_payload_helpers(self, records):
        assert queries.list_payload(records, "h")["count"] == 3
        assert queries.get_payload(records[0], "h")["item"]["id"] == "a"

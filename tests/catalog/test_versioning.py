"""Tests for semver helpers, schema migration and reserved-id rules."""

from __future__ import annotations

import pytest

from instruction_spine.catalog.bootstrap import is_ingestible, is_metadata_file, is_reserved_id
from instruction_spine.catalog.versioning import (
    bump_version,
    is_greater,
    is_semver,
    migrate_record,
    parse_semver,
    review_interval_days,
)


class TestSemver:
    def test_parse(self):
        assert parse_semver("1.2.3") == (1, 2, 3)
        assert parse_semver("1.2.3-rc.1") == (1, 2, 3)
        assert parse_semver("1.2") is None
        assert not is_semver(123)

    @pytest.mark.parametrize(
        "candidate,current,expected",
        [
            ("1.0.1", "1.0.0", True),
            ("1.10.0", "1.9.9", True),
            ("1.0.0", "1.0.0", False),
            ("0.9.0", "1.0.0", False),
            ("garbage", "1.0.0", False),
            ("0.0.1", "garbage", True),
        ],
    )
    def test_is_greater(self, candidate, current, expected):
        assert is_greater(candidate, current) is expected

    def test_bump(self):
        assert bump_version("1.2.3") == "1.2.4"
        assert bump_version("1.2.3", "minor") == "1.3.0"
        assert bump_version("1.2.3-beta", "major") == "2.0.0"

    def test_bump_unknown_part(self):
        with pytest.raises(ValueError):
            bump_version("1.0.0", "build")


class TestReviewInterval:
    @pytest.mark.parametrize(
        "tier,requirement,days",
        [
            ("P0", "optional", 30),
            ("P1", "optional", 30),
            ("P3", "mandatory", 30),
            ("P4", "critical", 30),
            ("P2", "optional", 60),
            ("P3", "recommended", 90),
            ("P4", "optional", 120),
        ],
    )
    def test_interval(self, tier, requirement, days):
        assert review_interval_days(tier, requirement) == days


class TestMigration:
    def test_v1_gets_interval_and_schema(self):
        raw = {"id": "x", "priorityTier": "P2", "requirement": "optional", "schemaVersion": "1"}
        notes = migrate_record(raw)
        assert raw["reviewIntervalDays"] == 60
        assert raw["schemaVersion"] == "2"
        assert len(notes) == 2

    def test_missing_schema_treated_as_v1(self):
        raw = {"id": "x"}
        migrate_record(raw)
        assert raw["reviewIntervalDays"] == 120

    def test_current_record_untouched(self):
        raw = {"id": "x", "schemaVersion": "2"}
        assert migrate_record(raw) == []
        assert "reviewIntervalDays" not in raw


class TestReserved:
    def test_reserved_ids(self):
        assert is_reserved_id("000-bootstrapper")
        assert is_reserved_id("001-Lifecycle-Bootstrap-v2")
        assert not is_reserved_id("002-bootstrapper")
        assert not is_reserved_id("")

    def test_metadata_files(self):
        assert is_metadata_file("gates.json")
        assert is_metadata_file("_index.json")
        assert is_metadata_file("bootstrap.json")
        assert not is_metadata_file("record.json")

    def test_ingestible(self):
        assert is_ingestible("record.json")
        assert not is_ingestible("record.txt")
        assert not is_ingestible("000-bootstrapper.json")
        assert not is_ingestible("Gates.json")

"""Semantic version helpers and on-disk schema migration."""

from __future__ import annotations

import re
from typing import Any

from instruction_spine.catalog.models import SCHEMA_VERSION

_SEMVER = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$")

BUMP_PARTS = ("patch", "minor", "major")


def parse_semver(version: str) -> tuple[int, int, int] | None:
    """Return ``(major, minor, patch)`` or ``None`` when not semver."""
    match = _SEMVER.match(version or "")
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def is_semver(version: Any) -> bool:
    return isinstance(version, str) and parse_semver(version) is not None


def is_greater(candidate: str, current: str) -> bool:
    """True when ``candidate`` is strictly newer than ``current``.

    Pre-release / build suffixes are ignored for ordering. An unparseable
    current version is treated as ``0.0.0``.
    """
    new = parse_semver(candidate)
    if new is None:
        return False
    return new > (parse_semver(current) or (0, 0, 0))


def bump_version(version: str, part: str = "patch") -> str:
    """Bump one component of a semver string, dropping any suffix."""
    if part not in BUMP_PARTS:
        raise ValueError(f"unknown bump part {part!r}")
    major, minor, patch = parse_semver(version) or (1, 0, 0)
    if part == "major":
        return f"{major + 1}.0.0"
    if part == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


def review_interval_days(tier: str, requirement: str) -> int:
    """Default review cadence: shorter for higher criticality."""
    if tier in ("P0", "P1") or requirement in ("mandatory", "critical"):
        return 30
    if tier == "P2":
        return 60
    if tier == "P3":
        return 90
    return 120


def migrate_record(raw: dict[str, Any]) -> list[str]:
    """Upgrade a raw on-disk record in place; returns migration notes.

    An empty list means the record is already current.
    """
    notes: list[str] = []
    previous = str(raw.get("schemaVersion") or "1")

    # v1 -> v2: reviewIntervalDays became explicit
    if previous == "1" and not raw.get("reviewIntervalDays"):
        tier = str(raw.get("priorityTier") or "P4")
        requirement = str(raw.get("requirement") or "optional")
        raw["reviewIntervalDays"] = review_interval_days(tier, requirement)
        notes.append("added reviewIntervalDays from tier+requirement")

    if previous != SCHEMA_VERSION:
        raw["schemaVersion"] = SCHEMA_VERSION
        notes.append(f"schemaVersion updated {previous}->{SCHEMA_VERSION}")
    return notes

"""
Governance classifier - turns author input into fully governed records.

Manifesto:
    Authors supply an id, a body and a priority.  Everything else a
    governed record needs (owner, tier, review cadence, hashes, summary,
    change history) is derived here, deterministically, so two catalogs fed
    the same input agree field for field.

Architecture:
    ::

        raw entry (camel or snake keys)
             │
             ▼
        normalize()   pure: validate, fill defaults, derive
             │        tier / sourceHash / riskScore / summary / review dates
             ▼
        enrich()      effectful: ownership rules for "unowned" records
             │
             ▼
        governance_reasons()   owner/category gates for high tiers

        merge(existing, patch)  update path: version rules + changeLog
        refresh(record)         groom path: recompute derived fields

Features:
    - **Priority banding:** process-level thresholds (default 80/70/60/20)
    - **Risk score:** (100 - clamp(priority, 1, 100)) + requirement weight
    - **Review cadence:** explicit interval, else by tier / requirement
    - **Version rules:** body change auto-bumps patch; explicit versions
      must move forward

Examples:
    >>> classifier = GovernanceClassifier()
    >>> record = classifier.normalize({"id": "x1", "body": "hello", "priority": 5})
    >>> record.priority_tier.value, record.version, record.owner
    ('P4', '1.0.0', 'unowned')

Tags:
    governance, classification, normalization, versioning, instruction-spine

Doc-Types:
    - API Reference
    - Governance Rules
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from instruction_spine.catalog.bootstrap import is_ingestible, is_reserved_id
from instruction_spine.catalog.models import (
    INITIAL_VERSION,
    SCHEMA_VERSION,
    UNOWNED,
    Audience,
    ChangeLogEntry,
    Classification,
    InstructionRecord,
    PriorityTier,
    Requirement,
    Status,
    utc_now,
)
from instruction_spine.catalog.ownership import OwnershipResolver
from instruction_spine.catalog.versioning import (
    bump_version,
    is_greater,
    is_semver,
    review_interval_days,
)
from instruction_spine.core.errors import ValidationFailedError
from instruction_spine.core.hashing import sha256_hex
from instruction_spine.core.settings import TIERS, CatalogSettings

E = TypeVar("E", bound=Enum)

_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,119}$")

_REQUIREMENT_WEIGHT = {
    Requirement.MANDATORY: 50,
    Requirement.CRITICAL: 60,
    Requirement.RECOMMENDED: 20,
    Requirement.OPTIONAL: 5,
    Requirement.DEPRECATED: -30,
}

# Fields an author can never set directly.
_DERIVED = frozenset({"id", "created_at", "source_hash", "change_log", "schema_version", "priority_tier", "risk_score"})

# Changing any of these moves the next review date.
_REVIEW_INPUTS = frozenset({"priority", "requirement", "last_reviewed_at", "review_interval_days"})

UNCATEGORIZED = "uncategorized"


def snake_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Accept camelCase (wire / disk) or snake_case (python) keys."""
    return {to_snake(str(key)): value for key, value in raw.items()}


def normalize_categories(values: Iterable[Any]) -> list[str]:
    """Lowercase, trim, dedupe and sort; non-strings are dropped."""
    return sorted({v.strip().lower() for v in values if isinstance(v, str) and v.strip()})


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class GovernanceClassifier:
    """Normalizes, enriches and re-derives instruction governance fields."""

    def __init__(
        self,
        *,
        tier_thresholds: tuple[int, int, int, int] = (80, 70, 60, 20),
        summary_length: int = 200,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tier_thresholds = tier_thresholds
        self.summary_length = summary_length
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: CatalogSettings, *, clock: Callable[[], datetime] = utc_now
    ) -> GovernanceClassifier:
        return cls(
            tier_thresholds=settings.tier_thresholds,
            summary_length=settings.semantic_summary_length,
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    # ── Derivations ──────────────────────────────────────────────────

    def priority_tier(self, priority: int) -> PriorityTier:
        for tier, lower_bound in zip(TIERS, self.tier_thresholds):
            if priority >= lower_bound:
                return PriorityTier(tier)
        return PriorityTier.P4

    @staticmethod
    def risk_score(priority: int, requirement: Requirement) -> int:
        base = 100 - min(max(priority, 1), 100)
        return base + _REQUIREMENT_WEIGHT[requirement]

    def semantic_summary(self, body: str) -> str:
        """First non-empty body line, bounded in length."""
        line = next((ln.strip() for ln in body.splitlines() if ln.strip()), "")
        if len(line) > self.summary_length:
            line = line[: self.summary_length - 1].rstrip() + "…"
        return line

    # ── Normalize ────────────────────────────────────────────────────

    def normalize(
        self,
        raw: Mapping[str, Any],
        *,
        lax: bool = False,
        from_disk: bool = False,
    ) -> InstructionRecord:
        """Build a governed record from raw input.

        ``from_disk`` trusts stored derived fields (sourceHash, tier,
        categories order, risk, summary) so integrity checks and groom can
        see drift instead of having it silently papered over.

        Raises:
            ValidationFailedError: with every field-level reason found.
        """
        data = snake_keys(raw)
        now = self._clock()
        reasons: list[str] = []

        rid = data.get("id").strip() if isinstance(data.get("id"), str) else ""
        if not rid:
            reasons.append("missing id")
        elif is_reserved_id(rid) or not is_ingestible(f"{rid}.json"):
            reasons.append("reserved id")
        elif not _ID.match(rid):
            reasons.append("invalid id")

        body = data.get("body")
        if not isinstance(body, str) or not body.strip():
            reasons.append("missing body")
            body = ""
        elif not from_disk:
            body = body.strip()

        title = data.get("title").strip() if isinstance(data.get("title"), str) else ""
        if not title:
            if from_disk:
                reasons.append("missing title")
            title = rid

        priority = data.get("priority")
        if priority is None and lax:
            priority = 50
        if priority is None:
            reasons.append("missing priority")
            priority = 0
        elif isinstance(priority, bool) or not isinstance(priority, int):
            reasons.append("priority must be an integer")
            priority = 0
        elif not 0 <= priority <= 100:
            reasons.append("priority out of range")

        audience = self._enum(Audience, data.get("audience"), Audience.ALL, reasons, lax)
        requirement = self._enum(Requirement, data.get("requirement"), Requirement.OPTIONAL, reasons, lax)
        status = self._enum(Status, data.get("status"), Status.DRAFT, reasons, lax)
        classification = self._enum(
            Classification, data.get("classification"), Classification.INTERNAL, reasons, lax
        )

        raw_categories = data.get("categories") or []
        if not isinstance(raw_categories, list | tuple | set):
            reasons.append("categories must be a list")
            raw_categories = []
        if from_disk:
            categories = [c for c in raw_categories if isinstance(c, str)]
        else:
            categories = normalize_categories(raw_categories) or [UNCATEGORIZED]

        version = data.get("version") or INITIAL_VERSION
        if not is_semver(version):
            reasons.append("invalid version")

        deprecated_by = _opt_str(data.get("deprecated_by"))
        if requirement is Requirement.DEPRECATED and not deprecated_by:
            reasons.append("deprecated requires deprecatedBy")

        interval = data.get("review_interval_days")
        if interval is not None and (isinstance(interval, bool) or not isinstance(interval, int) or interval < 1):
            reasons.append("reviewIntervalDays must be a positive integer")
            interval = None

        change_log = self._change_log(data.get("change_log"), reasons)

        if reasons:
            raise ValidationFailedError(
                f"invalid instruction {rid or '<missing id>'}", reasons=reasons
            ).with_context(instruction_id=rid or None)

        tier = self.priority_tier(priority)
        stored_tier = data.get("priority_tier")
        if from_disk and stored_tier in TIERS:
            tier = PriorityTier(stored_tier)

        last_reviewed = parse_timestamp(data.get("last_reviewed_at")) or now
        next_review = parse_timestamp(data.get("next_review_due"))
        if next_review is None:
            days = interval or review_interval_days(tier.value, requirement.value)
            next_review = last_reviewed + timedelta(days=days)

        source_hash = data.get("source_hash")
        if not (from_disk and isinstance(source_hash, str) and source_hash):
            source_hash = sha256_hex(body)

        risk = data.get("risk_score")
        if not (from_disk and isinstance(risk, int)):
            risk = self.risk_score(priority, requirement)

        summary = data.get("semantic_summary")
        if not (isinstance(summary, str) and summary.strip()):
            summary = self.semantic_summary(body)

        try:
            return InstructionRecord(
                id=rid,
                title=title,
                body=body,
                rationale=_opt_str(data.get("rationale")),
                priority=priority,
                audience=audience,
                requirement=requirement,
                categories=categories,
                source_hash=source_hash,
                schema_version=SCHEMA_VERSION,
                created_at=parse_timestamp(data.get("created_at")) or now,
                updated_at=parse_timestamp(data.get("updated_at")) or now,
                version=version,
                status=status,
                owner=_opt_str(data.get("owner")) or UNOWNED,
                priority_tier=tier,
                classification=classification,
                last_reviewed_at=last_reviewed,
                next_review_due=next_review,
                review_interval_days=interval,
                change_log=change_log or [ChangeLogEntry(version=version, changed_at=now, summary="initial")],
                supersedes=_opt_str(data.get("supersedes")),
                deprecated_by=deprecated_by,
                risk_score=risk,
                semantic_summary=summary,
                created_by_agent=_opt_str(data.get("created_by_agent")),
                source_workspace=_opt_str(data.get("source_workspace")),
            )
        except ValidationError as exc:
            details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
            raise ValidationFailedError(
                f"invalid instruction {rid}", reasons=details, cause=exc
            ).with_context(instruction_id=rid) from exc

    # ── Enrich / gates ───────────────────────────────────────────────

    def enrich(self, record: InstructionRecord, resolver: OwnershipResolver | None) -> InstructionRecord:
        """Resolve an owner for ``unowned`` records; returns the same object if nothing changed."""
        if record.owner != UNOWNED or resolver is None:
            return record
        owner = resolver.resolve(record.id)
        if not owner:
            return record
        return record.model_copy(update={"owner": owner, "updated_at": self._clock()})

    @staticmethod
    def governance_reasons(record: InstructionRecord) -> list[str]:
        reasons: list[str] = []
        unowned = record.owner == UNOWNED
        if record.priority_tier in (PriorityTier.P0, PriorityTier.P1):
            if unowned or record.categories in ([], [UNCATEGORIZED]):
                reasons.append(f"{record.priority_tier.value} requires category and owner")
        if record.requirement in (Requirement.MANDATORY, Requirement.CRITICAL) and unowned:
            reasons.append("mandatory/critical require owner")
        return reasons

    # ── Update path ──────────────────────────────────────────────────

    def merge(
        self,
        existing: InstructionRecord,
        patch: Mapping[str, Any],
    ) -> tuple[InstructionRecord, bool]:
        """Apply a partial update; returns ``(record, changed)``.

        Missing ``title`` / ``body`` keep the existing values.  A body change
        with no version auto-bumps the patch number; a supplied version must
        be strictly greater than the current one.
        """
        incoming = snake_keys(patch)
        fields = existing.to_fields()
        for key, value in incoming.items():
            if key in _DERIVED or key not in fields:
                continue
            if value is None and key in ("title", "body", "priority"):
                continue
            fields[key] = value

        new_body = fields["body"].strip() if isinstance(fields["body"], str) else fields["body"]
        body_changed = new_body != existing.body
        supplied = incoming.get("version")
        version = existing.version
        summary: str | None = None

        if supplied is not None and supplied != existing.version:
            if not is_semver(supplied):
                raise ValidationFailedError(
                    f"invalid version for {existing.id}", reasons=["invalid version"]
                ).with_context(instruction_id=existing.id)
            if not is_greater(supplied, existing.version):
                raise ValidationFailedError(
                    f"version not bumped for {existing.id}", reasons=["version not bumped"]
                ).with_context(instruction_id=existing.id, current=existing.version, supplied=supplied)
            version = supplied
            summary = "body update" if body_changed else "metadata update"
        elif body_changed:
            if supplied is not None:
                raise ValidationFailedError(
                    f"version not bumped for {existing.id}", reasons=["version not bumped"]
                ).with_context(instruction_id=existing.id, current=existing.version)
            version = bump_version(existing.version, "patch")
            summary = "auto bump (body change)"

        fields["version"] = version
        if body_changed and not incoming.get("semantic_summary"):
            fields["semantic_summary"] = None
        if _REVIEW_INPUTS.intersection(incoming) and "next_review_due" not in incoming:
            fields["next_review_due"] = None

        change_log = list(fields["change_log"])
        if version != existing.version:
            explicit = incoming.get("change_summary")
            change_log.append(
                {
                    "version": version,
                    "changed_at": self._clock(),
                    "summary": explicit if isinstance(explicit, str) and explicit else summary,
                }
            )
        fields["change_log"] = change_log
        fields["created_at"] = existing.created_at
        fields["updated_at"] = existing.updated_at

        candidate = self.normalize(fields)
        if _comparable(candidate) == _comparable(existing):
            return existing, False
        if supplied is not None and version == existing.version:
            raise ValidationFailedError(
                f"version not bumped for {existing.id}", reasons=["version not bumped"]
            ).with_context(instruction_id=existing.id, current=existing.version)
        return candidate.model_copy(update={"updated_at": self._clock()}), True

    def bump(self, record: InstructionRecord, part: str, summary: str) -> InstructionRecord:
        """Explicit version bump used by governance updates."""
        version = bump_version(record.version, part)
        entry = ChangeLogEntry(version=version, changed_at=self._clock(), summary=summary)
        return record.model_copy(
            update={
                "version": version,
                "change_log": [*record.change_log, entry],
                "updated_at": self._clock(),
            }
        )

    # ── Groom path ───────────────────────────────────────────────────

    def refresh(self, record: InstructionRecord) -> tuple[InstructionRecord, set[str]]:
        """Recompute derived fields; returns the record and the kinds of change.

        Kinds: ``hash`` (sourceHash repaired), ``categories`` (re-normalized),
        ``governance`` (tier, risk, summary or review dates).
        """
        updates: dict[str, Any] = {}
        kinds: set[str] = set()

        source_hash = sha256_hex(record.body)
        if source_hash != record.source_hash:
            updates["source_hash"] = source_hash
            updates["semantic_summary"] = self.semantic_summary(record.body)
            kinds.add("hash")

        categories = normalize_categories(record.categories) or [UNCATEGORIZED]
        if categories != record.categories:
            updates["categories"] = categories
            kinds.add("categories")

        tier = self.priority_tier(record.priority)
        if tier != record.priority_tier:
            updates["priority_tier"] = tier
            kinds.add("governance")

        risk = self.risk_score(record.priority, record.requirement)
        if risk != record.risk_score:
            updates["risk_score"] = risk
            kinds.add("governance")

        if record.next_review_due < record.last_reviewed_at:
            days = record.review_interval_days or review_interval_days(tier.value, record.requirement.value)
            updates["next_review_due"] = record.last_reviewed_at + timedelta(days=days)
            kinds.add("governance")

        if not kinds:
            return record, kinds
        updates["updated_at"] = self._clock()
        return record.model_copy(update=updates), kinds

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _enum(enum_cls: type[E], value: Any, default: E, reasons: list[str], lax: bool) -> E:
        if value is None or value == "":
            return default
        try:
            return enum_cls(value)
        except ValueError:
            if not lax:
                reasons.append(f"invalid {enum_cls.__name__.lower()}: {value}")
            return default

    @staticmethod
    def _change_log(value: Any, reasons: list[str]) -> list[ChangeLogEntry]:
        if not value:
            return []
        if not isinstance(value, list):
            reasons.append("changeLog must be a list")
            return []
        try:
            return [
                item if isinstance(item, ChangeLogEntry) else ChangeLogEntry.model_validate(item)
                for item in value
            ]
        except ValidationError:
            reasons.append("invalid changeLog entry")
            return []


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _comparable(record: InstructionRecord) -> dict[str, Any]:
    fields = record.to_fields()
    fields.pop("updated_at", None)
    return fields

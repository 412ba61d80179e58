"""
Catalog store - authoritative persistence and index of instruction records.

Manifesto:
    The instant a mutation resolves, every subsequent read must see it.
    There is no eventual-consistency window: the in-memory index is the
    source of truth between writes, and it is swapped only after the file
    rename succeeded, by the task that performed the write.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        CatalogStore                          │
        ├──────────────────────────────────────────────────────────────┤
        │ reads (lock-free)      get / find / list / catalog_hash      │
        │                        governance_snapshot                   │
        │                                                              │
        │ per-id mutations       create / update / remove /            │
        │ (serializer.records)   governance_update                     │
        │                                                              │
        │ structural passes      load / groom / import_entries /       │
        │ (serializer.structural) repair                               │
        ├──────────────────────────────────────────────────────────────┤
        │ GovernanceClassifier   normalize → enrich → governance gates │
        │ RecordStorage          atomic write / delete / scan          │
        │ GovernanceHashService  dirty flag, recompute on next read    │
        │ AuditLog               JSONL trail of committed mutations    │
        └──────────────────────────────────────────────────────────────┘

    Index swaps are copy-on-write: a reader that grabbed ``self._index``
    keeps a consistent snapshot even while a mutation replaces it.

Failure policy:
    A failed write leaves the index untouched and raises a typed error.
    Bulk passes (``load``, ``remove``, ``groom``, ``import_entries``) collect
    per-record failures and keep going.

Tags:
    catalog, store, persistence, consistency, concurrency, instruction-spine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from instruction_spine.catalog.audit import AuditLog
from instruction_spine.catalog.bootstrap import is_reserved_id
from instruction_spine.catalog.classifier import GovernanceClassifier, normalize_categories, parse_timestamp
from instruction_spine.catalog.integrity import GovernanceHashService, GovernanceSnapshot
from instruction_spine.catalog.locks import MutationSerializer
from instruction_spine.catalog.models import (
    InstructionRecord,
    Requirement,
    Status,
    utc_now,
)
from instruction_spine.catalog.ownership import OwnershipResolver
from instruction_spine.catalog.storage import DirectoryStorage, RecordStorage
from instruction_spine.catalog.versioning import BUMP_PARTS, migrate_record, review_interval_days
from instruction_spine.core.errors import (
    CorruptedRecordError,
    IOFailureError,
    NotFoundError,
    SpineError,
    ValidationFailedError,
)
from instruction_spine.core.hashing import catalog_hash, sha256_hex
from instruction_spine.core.logging import get_logger
from instruction_spine.core.settings import CatalogSettings

logger = get_logger(__name__)


# ── Outcomes ─────────────────────────────────────────────────────────────


@dataclass(slots=True)
class LoadReport:
    scanned: int = 0
    accepted: int = 0
    skipped: list[dict[str, str]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    migrated: list[str] = field(default_factory=list)
    enriched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "accepted": self.accepted,
            "skipped": len(self.skipped),
            "errors": self.errors,
            "migrated": self.migrated,
            "enriched": self.enriched,
        }


@dataclass(slots=True)
class CreateOutcome:
    id: str
    created: bool = False
    overwritten: bool = False
    skipped: bool = False
    changed: bool = False
    hash: str = ""
    verified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created": self.created,
            "overwritten": self.overwritten,
            "skipped": self.skipped,
            "changed": self.changed,
            "hash": self.hash,
            "verified": self.verified,
        }


@dataclass(slots=True)
class UpdateOutcome:
    id: str
    version: str
    changed: bool

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "updated": True, "version": self.version, "changed": self.changed}


@dataclass(slots=True)
class RemoveOutcome:
    removed_ids: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed": len(self.removed_ids),
            "removedIds": self.removed_ids,
            "missing": self.missing,
            "errorCount": len(self.errors),
            "errors": self.errors,
        }


@dataclass(slots=True)
class GroomMode:
    dry_run: bool = False
    remove_deprecated: bool = False
    merge_duplicates: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any] | None) -> GroomMode:
        params = params or {}
        return cls(
            dry_run=bool(params.get("dryRun", params.get("dry_run", False))),
            remove_deprecated=bool(params.get("removeDeprecated", params.get("remove_deprecated", False))),
            merge_duplicates=bool(params.get("mergeDuplicates", params.get("merge_duplicates", False))),
        )


@dataclass(slots=True)
class GroomReport:
    previous_hash: str
    hash: str = ""
    scanned: int = 0
    repaired_hashes: int = 0
    normalized_categories: int = 0
    updated_governance: int = 0
    deprecated_removed: int = 0
    duplicates_merged: int = 0
    files_rewritten: int = 0
    dry_run: bool = False
    notes: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousHash": self.previous_hash,
            "hash": self.hash,
            "scanned": self.scanned,
            "repairedHashes": self.repaired_hashes,
            "normalizedCategories": self.normalized_categories,
            "updatedGovernance": self.updated_governance,
            "deprecatedRemoved": self.deprecated_removed,
            "duplicatesMerged": self.duplicates_merged,
            "filesRewritten": self.files_rewritten,
            "dryRun": self.dry_run,
            "notes": self.notes,
            "errors": self.errors,
        }


def _entry_id(entry: Mapping[str, Any]) -> str:
    rid = entry.get("id")
    return rid.strip() if isinstance(rid, str) else ""


def _failure(rid: str, exc: SpineError) -> dict[str, Any]:
    failure: dict[str, Any] = {"id": rid, "code": exc.code, "error": exc.message}
    reasons = getattr(exc, "reasons", None)
    if reasons:
        failure["reasons"] = reasons
    return failure


# ── Store ────────────────────────────────────────────────────────────────


class CatalogStore:
    """In-memory index over a ``RecordStorage`` with serialized mutations."""

    def __init__(
        self,
        storage: RecordStorage,
        *,
        classifier: GovernanceClassifier | None = None,
        ownership: OwnershipResolver | None = None,
        audit: AuditLog | None = None,
        trace: bool = False,
    ):
        self.storage = storage
        self.classifier = classifier or GovernanceClassifier()
        self.ownership = ownership
        self.audit = audit or AuditLog(None)
        self.trace = trace
        self.governance = GovernanceHashService()
        self.serializer = MutationSerializer()
        self.loaded = False
        self.last_load: LoadReport | None = None
        self._index: dict[str, InstructionRecord] = {}
        self._catalog_hash: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: CatalogSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> CatalogStore:
        return cls(
            DirectoryStorage(settings.dir),
            classifier=GovernanceClassifier.from_settings(settings, clock=clock),
            ownership=OwnershipResolver(settings.owners_file),
            audit=AuditLog(settings.audit_log_path, clock=clock),
            trace=settings.trace,
        )

    # ── Reads (lock-free) ────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, instruction_id: object) -> bool:
        return instruction_id in self._index

    def find(self, instruction_id: str) -> InstructionRecord | None:
        record = self._index.get(instruction_id)
        return record.model_copy(deep=True) if record is not None else None

    def get(self, instruction_id: str) -> InstructionRecord:
        """Current record; never touches disk.

        Raises:
            NotFoundError: if the id is not in the index.
        """
        record = self.find(instruction_id)
        if record is None:
            raise NotFoundError(f"instruction {instruction_id!r} not found").with_context(
                instruction_id=instruction_id
            )
        return record

    def list(self, category: str | None = None) -> list[InstructionRecord]:
        """Defensive copies of every record, id-sorted, optionally by category."""
        index = self._index
        wanted = category.strip().lower() if category else None
        return [
            index[rid].model_copy(deep=True)
            for rid in sorted(index)
            if wanted is None or wanted in index[rid].categories
        ]

    def records(self) -> list[InstructionRecord]:
        """The live (frozen) records without copying, id-sorted."""
        index = self._index
        return [index[rid] for rid in sorted(index)]

    @property
    def catalog_hash(self) -> str:
        if self._catalog_hash is None:
            self._catalog_hash = catalog_hash((r.id, r.source_hash) for r in self._index.values())
        return self._catalog_hash

    def governance_snapshot(self) -> GovernanceSnapshot:
        return self.governance.current(self._index.values())

    async def dir_info(self) -> dict[str, Any]:
        files = await self.storage.keys()
        return {"dir": self.storage.location, "filesCount": len(files), "files": files}

    # ── Load ─────────────────────────────────────────────────────────

    async def load(self) -> LoadReport:
        """Scan storage and rebuild the index; malformed files are skipped and reported."""
        async with self.serializer.structural():
            found, scanned = await self.storage.scan()
            report = LoadReport(scanned=scanned)
            index: dict[str, InstructionRecord] = {}
            rewrite: list[InstructionRecord] = []

            for item in found:
                if item.error is not None:
                    report.errors.append(
                        {"file": item.location, "code": CorruptedRecordError.code, "error": item.error}
                    )
                    logger.warning("catalog.corrupted_record", file=item.location, error=item.error)
                    continue

                data = item.data or {}
                if not all(isinstance(data.get(k), str) for k in ("id", "title", "body")):
                    report.skipped.append({"file": item.location, "reason": "not an instruction"})
                    continue
                if is_reserved_id(data["id"]):
                    report.skipped.append({"file": item.location, "reason": "reserved id"})
                    continue

                notes = migrate_record(data)
                try:
                    record = self.classifier.normalize(data, lax=True, from_disk=True)
                except ValidationFailedError as exc:
                    report.errors.append({"file": item.location, **_failure(_entry_id(data), exc)})
                    logger.warning("catalog.invalid_record", file=item.location, reasons=exc.reasons)
                    continue

                enriched = self.classifier.enrich(record, self.ownership)
                if notes:
                    report.migrated.append(record.id)
                if enriched is not record:
                    report.enriched.append(record.id)
                if notes or enriched is not record:
                    rewrite.append(enriched)
                if record.id in index:
                    logger.warning("catalog.duplicate_id", id=record.id, file=item.location)
                index[record.id] = enriched

            for record in rewrite:
                try:
                    await self.storage.write(record.id, record.to_json_dict())
                except IOFailureError as exc:
                    report.errors.append(_failure(record.id, exc))

            report.accepted = len(index)
            self._index = index
            self._invalidate()
            self.loaded = True
            self.last_load = report

        logger.info(
            "catalog.loaded",
            dir=self.storage.location,
            scanned=report.scanned,
            accepted=report.accepted,
            skipped=len(report.skipped),
            errors=len(report.errors),
        )
        return report

    # ── Per-id mutations ─────────────────────────────────────────────

    async def create(
        self,
        entry: Mapping[str, Any],
        *,
        overwrite: bool = False,
        lax: bool = False,
    ) -> CreateOutcome:
        """Create-or-skip; with ``overwrite`` an existing record is updated.

        An existing id without ``overwrite`` is reported as skipped without
        re-validating the incoming content.
        """
        rid = _entry_id(entry)
        if not rid:
            raise ValidationFailedError("invalid instruction <missing id>", reasons=["missing id"])
        if rid in self._index and not overwrite:
            return self._skipped(rid)

        async with self.serializer.records([rid]):
            if rid in self._index and not overwrite:
                return self._skipped(rid)
            existed = rid in self._index
            record, changed = await self._upsert(entry, lax=lax)

        outcome = CreateOutcome(
            id=rid,
            created=not existed,
            overwritten=existed,
            changed=changed,
            hash=self.catalog_hash,
            verified=self._index.get(rid) is record,
        )
        if changed:
            await self.audit.record("add", [rid], overwrite=overwrite, version=record.version)
            logger.info(
                "instruction.created" if not existed else "instruction.overwritten",
                id=rid,
                version=record.version,
                tier=record.priority_tier.value,
            )
        return outcome

    async def update(self, entry: Mapping[str, Any]) -> UpdateOutcome:
        """Update an existing record; bumps ``version`` only when the body changed.

        Raises:
            NotFoundError: if the id does not exist.
        """
        rid = _entry_id(entry)
        async with self.serializer.records([rid]):
            existing = self._index.get(rid)
            if existing is None:
                raise NotFoundError(f"instruction {rid!r} not found").with_context(instruction_id=rid)
            record, changed = self.classifier.merge(existing, entry)
            if changed:
                self._check_governance(record)
                await self._commit(record)

        if changed:
            await self.audit.record("update", [rid], version=record.version)
            logger.info("instruction.updated", id=rid, version=record.version)
        return UpdateOutcome(id=rid, version=record.version, changed=changed)

    async def remove(self, ids: Iterable[str], *, missing_ok: bool = False) -> RemoveOutcome:
        """Delete records; one failing id never stops the others."""
        wanted = list(dict.fromkeys(i.strip() for i in ids if isinstance(i, str) and i.strip()))
        outcome = RemoveOutcome()

        async with self.serializer.records(wanted):
            for rid in wanted:
                if rid not in self._index:
                    outcome.missing.append(rid)
                    if not missing_ok:
                        outcome.errors.append(
                            {"id": rid, "code": NotFoundError.code, "error": f"instruction {rid!r} not found"}
                        )
                    continue
                try:
                    await self._drop(rid)
                except SpineError as exc:
                    outcome.errors.append(_failure(rid, exc))
                else:
                    outcome.removed_ids.append(rid)

        if outcome.removed_ids:
            await self.audit.record("remove", outcome.removed_ids, missing=outcome.missing)
            logger.info("instruction.removed", ids=outcome.removed_ids, missing=outcome.missing)
        return outcome

    async def governance_update(
        self,
        instruction_id: str,
        *,
        owner: str | None = None,
        status: str | None = None,
        last_reviewed_at: str | None = None,
        next_review_due: str | None = None,
        bump: str | None = None,
    ) -> dict[str, Any]:
        """Patch governance-only fields, optionally bumping the version."""
        reasons: list[str] = []
        updates: dict[str, Any] = {}
        if owner is not None:
            if not isinstance(owner, str) or not owner.strip():
                reasons.append("owner must be a non-empty string")
            else:
                updates["owner"] = owner.strip()
        if status is not None:
            try:
                updates["status"] = Status(status)
            except ValueError:
                reasons.append(f"invalid status: {status}")
        for key, value in (("last_reviewed_at", last_reviewed_at), ("next_review_due", next_review_due)):
            if value is not None:
                parsed = parse_timestamp(value)
                if parsed is None:
                    reasons.append(f"invalid timestamp for {key}")
                updates[key] = parsed
        if bump is not None and bump not in BUMP_PARTS:
            reasons.append(f"invalid bump: {bump}")
        if reasons:
            raise ValidationFailedError(
                f"invalid governance update for {instruction_id}", reasons=reasons
            ).with_context(instruction_id=instruction_id)

        async with self.serializer.records([instruction_id]):
            existing = self._index.get(instruction_id)
            if existing is None:
                raise NotFoundError(f"instruction {instruction_id!r} not found").with_context(
                    instruction_id=instruction_id
                )
            if "last_reviewed_at" in updates and "next_review_due" not in updates:
                days = existing.review_interval_days or review_interval_days(
                    existing.priority_tier.value, existing.requirement.value
                )
                updates["next_review_due"] = updates["last_reviewed_at"] + timedelta(days=days)

            changed = any(getattr(existing, k) != v for k, v in updates.items())
            record = existing
            if changed:
                record = existing.model_copy(update={**updates, "updated_at": self.classifier.now()})
            if bump:
                record = self.classifier.bump(record, bump, "governance update")
                changed = True
            if changed:
                self._check_governance(record)
                await self._commit(record)

        if changed:
            await self.audit.record("governanceUpdate", [instruction_id], fields=sorted(updates), bump=bump)
            logger.info("instruction.governance_updated", id=instruction_id, version=record.version)
        return {
            "id": instruction_id,
            "changed": changed,
            "version": record.version,
            "owner": record.owner,
            "status": record.status.value,
        }

    # ── Structural passes ────────────────────────────────────────────

    async def import_entries(
        self,
        entries: Sequence[Mapping[str, Any]],
        *,
        mode: str = "skip",
        lax: bool = False,
    ) -> dict[str, Any]:
        """Bulk create; ``mode`` is ``skip`` or ``overwrite`` for existing ids."""
        if mode not in ("skip", "overwrite"):
            raise ValidationFailedError(f"invalid import mode {mode!r}", reasons=["mode must be skip|overwrite"])

        imported: list[str] = []
        overwritten: list[str] = []
        skipped: list[str] = []
        errors: list[dict[str, Any]] = []

        async with self.serializer.structural():
            for entry in entries:
                rid = _entry_id(entry) if isinstance(entry, Mapping) else ""
                if rid in self._index and mode == "skip":
                    skipped.append(rid)
                    continue
                existed = rid in self._index
                try:
                    if not isinstance(entry, Mapping):
                        raise ValidationFailedError("entry must be an object", reasons=["entry must be an object"])
                    _, changed = await self._upsert(entry, lax=lax)
                except SpineError as exc:
                    errors.append(_failure(rid, exc))
                    continue
                if existed:
                    if changed:
                        overwritten.append(rid)
                    else:
                        skipped.append(rid)
                else:
                    imported.append(rid)

        if imported or overwritten:
            await self.audit.record("import", imported + overwritten, mode=mode)
        logger.info("catalog.imported", imported=len(imported), overwritten=len(overwritten), errors=len(errors))
        return {
            "imported": len(imported),
            "overwritten": len(overwritten),
            "skipped": len(skipped),
            "total": len(entries),
            "errors": errors,
            "hash": self.catalog_hash,
        }

    async def groom(self, mode: GroomMode | None = None) -> GroomReport:
        """Bulk maintenance; ``dry_run`` computes the diff without mutating."""
        mode = mode or GroomMode()
        async with self.serializer.structural():
            report = GroomReport(previous_hash=self.catalog_hash, dry_run=mode.dry_run)
            current = self.records()
            report.scanned = len(current)

            planned: dict[str, InstructionRecord] = {}
            for record in current:
                refreshed, kinds = self.classifier.refresh(record)
                if not kinds:
                    continue
                planned[record.id] = refreshed
                report.repaired_hashes += "hash" in kinds
                report.normalized_categories += "categories" in kinds
                report.updated_governance += "governance" in kinds

            view = {r.id: planned.get(r.id, r) for r in current}
            removals: set[str] = set()

            if mode.remove_deprecated:
                for record in view.values():
                    deprecated = record.requirement is Requirement.DEPRECATED or record.status is Status.DEPRECATED
                    successor = record.deprecated_by
                    if deprecated and successor and successor != record.id and successor in view:
                        removals.add(record.id)
                report.deprecated_removed = len(removals)

            if mode.merge_duplicates:
                groups: dict[str, list[InstructionRecord]] = defaultdict(list)
                for record in view.values():
                    if record.id not in removals:
                        groups[sha256_hex(record.body)].append(record)
                for group in groups.values():
                    if len(group) < 2:
                        continue
                    keeper, *duplicates = sorted(group, key=lambda r: r.id)
                    merged = normalize_categories(c for r in group for c in r.categories)
                    if merged != keeper.categories:
                        planned[keeper.id] = keeper.model_copy(
                            update={"categories": merged, "updated_at": self.classifier.now()}
                        )
                    removals.update(r.id for r in duplicates)
                    report.duplicates_merged += len(duplicates)

            rewrites = [planned[rid] for rid in sorted(planned) if rid not in removals]

            if mode.dry_run:
                report.notes.append(f"would-rewrite:{len(rewrites)}")
                report.notes.append(f"would-remove:{len(removals)}")
                report.hash = report.previous_hash
                return report

            for record in rewrites:
                try:
                    await self._commit(record)
                except SpineError as exc:
                    report.errors.append(_failure(record.id, exc))
                else:
                    report.files_rewritten += 1
            for rid in sorted(removals):
                try:
                    await self._drop(rid)
                except SpineError as exc:
                    report.errors.append(_failure(rid, exc))
            report.hash = self.catalog_hash

        await self.audit.record(
            "groom",
            [r.id for r in rewrites] + sorted(removals),
            rewritten=report.files_rewritten,
            removed=len(removals),
        )
        logger.info(
            "catalog.groomed",
            rewritten=report.files_rewritten,
            removed=len(removals),
            errors=len(report.errors),
        )
        return report

    async def repair(self) -> dict[str, Any]:
        """Explicitly recompute stale ``sourceHash`` values."""
        repaired: list[str] = []
        errors: list[dict[str, Any]] = []
        async with self.serializer.structural():
            for record in self.records():
                actual = sha256_hex(record.body)
                if actual == record.source_hash:
                    continue
                fixed = record.model_copy(update={"source_hash": actual, "updated_at": self.classifier.now()})
                try:
                    await self._commit(fixed)
                except SpineError as exc:
                    errors.append(_failure(record.id, exc))
                else:
                    repaired.append(record.id)

        if repaired:
            await self.audit.record("repair", repaired)
            logger.info("catalog.repaired", ids=repaired)
        return {"repaired": len(repaired), "ids": repaired, "errors": errors, "hash": self.catalog_hash}

    # ── Internals (caller holds the right lock) ──────────────────────

    async def _upsert(self, entry: Mapping[str, Any], *, lax: bool) -> tuple[InstructionRecord, bool]:
        existing = self._index.get(_entry_id(entry))
        if existing is None:
            record, changed = self.classifier.normalize(entry, lax=lax), True
        else:
            record, changed = self.classifier.merge(existing, entry)
        if not changed:
            return record, False
        record = self.classifier.enrich(record, self.ownership)
        self._check_governance(record)
        await self._commit(record)
        return record, True

    def _check_governance(self, record: InstructionRecord) -> None:
        reasons = self.classifier.governance_reasons(record)
        if reasons:
            raise ValidationFailedError(
                f"governance requirements not met for {record.id}", reasons=reasons
            ).with_context(instruction_id=record.id)

    async def _commit(self, record: InstructionRecord) -> None:
        """Persist then swap the index; on failure the index is untouched."""
        self._trace("commit.begin", id=record.id, version=record.version)
        try:
            await self.storage.write(record.id, record.to_json_dict())
        except IOFailureError:
            self._trace("commit.failed", id=record.id)
            raise
        except OSError as exc:
            self._trace("commit.failed", id=record.id)
            raise IOFailureError(f"failed to persist {record.id}: {exc}", cause=exc).with_context(
                instruction_id=record.id
            ) from exc

        previous = self._index.get(record.id)
        index = dict(self._index)
        index[record.id] = record
        self._index = index
        self._catalog_hash = None
        if previous is None or previous.governance_projection() != record.governance_projection():
            self.governance.invalidate()
        self._trace("commit.done", id=record.id)

    async def _drop(self, instruction_id: str) -> None:
        await self.storage.delete(instruction_id)
        index = dict(self._index)
        index.pop(instruction_id, None)
        self._index = index
        self._invalidate()
        self._trace("drop.done", id=instruction_id)

    def _invalidate(self) -> None:
        self._catalog_hash = None
        self.governance.invalidate()

    def _skipped(self, rid: str) -> CreateOutcome:
        return CreateOutcome(id=rid, skipped=True, hash=self.catalog_hash, verified=rid in self._index)

    def _trace(self, event: str, **fields: Any) -> None:
        if self.trace:
            logger.debug("catalog.trace", op=event, **fields)

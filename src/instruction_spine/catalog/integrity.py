"""
Governance hash and integrity checks.

Manifesto:
    External callers detect configuration drift by comparing one digest,
    not by diffing every record.  The digest covers only the governance
    projection ``{id, owner, priorityTier, version}`` so a pure body edit
    leaves it alone, while any ownership, tier or version change moves it.

Architecture:
    ::

        store mutation ──► GovernanceHashService.invalidate()   (dirty flag)
                                     │
        instructions/governanceHash  ▼
                           current(records)  recompute once, then cached
                                     │
                 sha256( "\\n".join(stable_json(p) for p in id-sorted projections) )

        audit_bodies(records)       sha256(body) == sourceHash, per record
        build_integrity_report()    snapshot diff + leakage + body audit

Tags:
    integrity, governance-hash, drift-detection, audit, instruction-spine
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from instruction_spine.catalog.bootstrap import is_reserved_id
from instruction_spine.catalog.models import InstructionRecord
from instruction_spine.core.errors import IntegrityMismatchError
from instruction_spine.core.hashing import hash_body, lines_hash, sha256_hex


@dataclass(slots=True)
class GovernanceSnapshot:
    hash: str
    items: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"governanceHash": self.hash, "count": len(self.items), "items": self.items}


class GovernanceHashService:
    """Lazily recomputed, dirty-flagged governance digest."""

    def __init__(self) -> None:
        self._dirty = True
        self._snapshot: GovernanceSnapshot | None = None
        self.recomputations = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    def invalidate(self) -> None:
        self._dirty = True

    def current(self, records: Iterable[InstructionRecord]) -> GovernanceSnapshot:
        if self._dirty or self._snapshot is None:
            self._snapshot = compute_governance(records)
            self._dirty = False
            self.recomputations += 1
        return self._snapshot


def compute_governance(records: Iterable[InstructionRecord]) -> GovernanceSnapshot:
    items = sorted(
        (r.governance_projection() for r in records if not is_reserved_id(r.id)),
        key=lambda p: p["id"],
    )
    return GovernanceSnapshot(hash=lines_hash(items), items=items)


# ── Body audit ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class BodyFinding:
    """A record whose stored ``sourceHash`` does not match its body.

    ``kind`` is ``whitespace`` when the stored hash matches a whitespace
    normalized form of the body, ``content`` otherwise.
    """

    id: str
    kind: str
    expected: str
    actual: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "kind": self.kind, "expected": self.expected, "actual": self.actual}


def verify_record(record: InstructionRecord) -> None:
    """Raise ``IntegrityMismatchError`` when ``sourceHash`` is stale."""
    actual = sha256_hex(record.body)
    if actual != record.source_hash:
        raise IntegrityMismatchError(
            f"sourceHash mismatch for {record.id}",
            expected=record.source_hash,
            actual=actual,
        ).with_context(instruction_id=record.id)


def audit_bodies(records: Iterable[InstructionRecord]) -> list[BodyFinding]:
    findings: list[BodyFinding] = []
    for record in records:
        try:
            verify_record(record)
        except IntegrityMismatchError as exc:
            variants = {
                sha256_hex(record.body.strip()),
                hash_body(record.body),
                hash_body(record.body, collapse_blank_lines=True),
            }
            kind = "whitespace" if record.source_hash in variants else "content"
            findings.append(BodyFinding(record.id, kind, exc.expected or "", exc.actual or ""))
    return findings


# ── Integrity report ─────────────────────────────────────────────────────


def build_integrity_report(
    records: Sequence[InstructionRecord],
    *,
    snapshot: dict[str, Any] | None,
    governance: GovernanceSnapshot,
    catalog_hash: str,
) -> dict[str, Any]:
    """Self-check of the live catalog.

    Against the canonical snapshot: ``missing`` holds live ids the snapshot
    lacks, ``extra`` snapshot ids no longer live, ``changed`` ids whose
    sourceHash moved. All empty when no snapshot exists.  ``recursionRisk`` is
    ``none`` unless reserved bootstrap ids leaked into the index.
    """
    live = {r.id: r.source_hash for r in records}
    missing: list[str] = []
    extra: list[str] = []
    changed: list[str] = []

    if snapshot is not None:
        baseline = {
            item["id"]: item.get("sourceHash")
            for item in snapshot.get("items", [])
            if isinstance(item, dict) and isinstance(item.get("id"), str)
        }
        missing = sorted(set(live) - set(baseline))
        extra = sorted(set(baseline) - set(live))
        changed = sorted(rid for rid in set(live) & set(baseline) if live[rid] != baseline[rid])

    leaked = sorted(rid for rid in live if is_reserved_id(rid))
    ratio = len(leaked) / max(1, len(live))
    findings = audit_bodies(records)

    return {
        "snapshot": "present" if snapshot is not None else "missing",
        "hash": catalog_hash,
        "count": len(live),
        "missing": missing,
        "extra": extra,
        "changed": changed,
        "drift": len(missing) + len(extra) + len(changed),
        "recursionRisk": "none" if not leaked else "high",
        "leakage": {"leakedIds": leaked, "leakageRatio": ratio},
        "governanceHash": governance.hash,
        "bodyAudit": {"checked": len(live), "mismatches": [f.to_dict() for f in findings]},
    }

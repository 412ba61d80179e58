"""Pure read actions over a list of records (``instructions/dispatch`` reads).

Every function takes already-copied records plus the catalog hash and
returns a JSON-ready payload.  Nothing here touches locks or disk.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from instruction_spine.catalog.models import InstructionRecord
from instruction_spine.core.errors import ValidationFailedError

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


def _items(records: Iterable[InstructionRecord], *, meta_only: bool = False) -> list[dict[str, Any]]:
    return [r.to_json_dict(meta_only=meta_only) for r in records]


def _str_list(value: Any, name: str, reasons: list[str]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        reasons.append(f"{name} must be a list of strings")
        return []
    return [v.strip().lower() for v in value if v.strip()]


def _int(value: Any, name: str, default: int | None, reasons: list[str]) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        reasons.append(f"{name} must be an integer")
        return default
    return value


def list_payload(records: Sequence[InstructionRecord], hash_: str) -> dict[str, Any]:
    return {"hash": hash_, "count": len(records), "items": _items(records)}


def get_payload(record: InstructionRecord, hash_: str) -> dict[str, Any]:
    return {"hash": hash_, "item": record.to_json_dict()}


def search(records: Sequence[InstructionRecord], q: str) -> list[InstructionRecord]:
    """Case-insensitive substring match over title, body and summary."""
    needle = q.strip().lower()
    if not needle:
        return list(records)
    return [
        r
        for r in records
        if needle in r.title.lower() or needle in r.body.lower() or needle in r.semantic_summary.lower()
    ]


def query(records: Sequence[InstructionRecord], params: Mapping[str, Any], hash_: str) -> dict[str, Any]:
    """Filtered, paginated listing.

    Raises:
        ValidationFailedError: on malformed filter values.
    """
    reasons: list[str] = []
    cats_all = _str_list(params.get("categoriesAll"), "categoriesAll", reasons)
    cats_any = _str_list(params.get("categoriesAny"), "categoriesAny", reasons)
    excluded = _str_list(params.get("excludeCategories"), "excludeCategories", reasons)
    tiers = [t.upper() for t in _str_list(params.get("priorityTiers"), "priorityTiers", reasons)]
    requirements = _str_list(params.get("requirements"), "requirements", reasons)
    pmin = _int(params.get("priorityMin"), "priorityMin", None, reasons)
    pmax = _int(params.get("priorityMax"), "priorityMax", None, reasons)
    limit = _int(params.get("limit"), "limit", DEFAULT_LIMIT, reasons)
    offset = _int(params.get("offset"), "offset", 0, reasons)
    text = params.get("text")
    if text is not None and not isinstance(text, str):
        reasons.append("text must be a string")
        text = None
    if limit is not None and not 1 <= limit <= MAX_LIMIT:
        reasons.append(f"limit must be between 1 and {MAX_LIMIT}")
    if offset is not None and offset < 0:
        reasons.append("offset must be >= 0")
    if reasons:
        raise ValidationFailedError("invalid query", reasons=reasons)
    assert limit is not None and offset is not None

    matched = search(records, text) if text else list(records)
    result: list[InstructionRecord] = []
    for r in matched:
        cats = set(r.categories)
        if cats_all and not set(cats_all) <= cats:
            continue
        if cats_any and not cats & set(cats_any):
            continue
        if excluded and cats & set(excluded):
            continue
        if pmin is not None and r.priority < pmin:
            continue
        if pmax is not None and r.priority > pmax:
            continue
        if tiers and r.priority_tier.value not in tiers:
            continue
        if requirements and r.requirement.value not in requirements:
            continue
        result.append(r)

    page = result[offset : offset + limit]
    applied = {
        key: value
        for key, value in {
            "categoriesAll": cats_all,
            "categoriesAny": cats_any,
            "excludeCategories": excluded,
            "priorityMin": pmin,
            "priorityMax": pmax,
            "priorityTiers": tiers,
            "requirements": requirements,
            "text": text,
        }.items()
        if value not in (None, [], "")
    }
    return {
        "hash": hash_,
        "total": len(result),
        "count": len(page),
        "offset": offset,
        "limit": limit,
        "items": _items(page),
        "applied": applied,
    }


def categories(records: Iterable[InstructionRecord]) -> dict[str, Any]:
    counts = Counter(c for r in records for c in r.categories)
    items = [{"name": name, "count": counts[name]} for name in sorted(counts)]
    return {"count": len(items), "categories": items}


def diff(records: Sequence[InstructionRecord], hash_: str, params: Mapping[str, Any]) -> dict[str, Any]:
    """Incremental sync against a client's view.

    A matching ``clientHash`` short-circuits to ``upToDate``.  Otherwise
    ``known`` (``[{id, sourceHash}]``) is compared record by record; with no
    ``known`` list every record counts as added.
    """
    if params.get("clientHash") == hash_:
        return {"upToDate": True, "hash": hash_}

    known_raw = params.get("known") or []
    if not isinstance(known_raw, list):
        raise ValidationFailedError("invalid diff", reasons=["known must be a list"])
    known = {
        k["id"]: k.get("sourceHash")
        for k in known_raw
        if isinstance(k, Mapping) and isinstance(k.get("id"), str)
    }
    live = {r.id: r for r in records}
    added = [live[rid].to_json_dict() for rid in sorted(live) if rid not in known]
    updated = [
        live[rid].to_json_dict()
        for rid in sorted(live)
        if rid in known and known[rid] != live[rid].source_hash
    ]
    removed = sorted(rid for rid in known if rid not in live)
    return {"hash": hash_, "added": added, "updated": updated, "removed": removed}


def export(records: Sequence[InstructionRecord], hash_: str, params: Mapping[str, Any]) -> dict[str, Any]:
    ids = params.get("ids")
    if ids is not None:
        if not isinstance(ids, list):
            raise ValidationFailedError("invalid export", reasons=["ids must be a list"])
        wanted = {i for i in ids if isinstance(i, str)}
        records = [r for r in records if r.id in wanted]
    meta_only = bool(params.get("metaOnly", False))
    return {"hash": hash_, "count": len(records), "items": _items(records, meta_only=meta_only)}

"""
Instruction operations.

Transport-agnostic functions behind the MCP tools and the CLI.  Each one
accepts an :class:`OperationContext` first and returns an
:class:`OperationResult` (never raises).  Every call, successful or not,
feeds one usage event into the context's aggregator.

Mutating operations refuse to run unless ``enable_mutation`` is set; the
refusal is a ``MUTATION_DISABLED`` failure for that call only.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from instruction_spine.catalog import queries
from instruction_spine.catalog.integrity import build_integrity_report
from instruction_spine.catalog.store import GroomMode
from instruction_spine.core.errors import MutationDisabledError, SpineError, ValidationFailedError
from instruction_spine.core.logging import LogContext, get_logger
from instruction_spine.ops.context import OperationContext
from instruction_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)

Payload = dict[str, Any]


async def _execute(
    ctx: OperationContext,
    operation: str,
    body: Callable[[], Awaitable[Payload]],
    *,
    mutates: bool = False,
    instruction_id: str | None = None,
) -> OperationResult[Payload]:
    timer = start_timer()
    with LogContext(request_id=ctx.request_id, operation=operation, caller=ctx.caller):
        try:
            if mutates and not ctx.services.mutation_enabled:
                raise MutationDisabledError().with_context(action=operation)
            data = await body()
        except SpineError as exc:
            logger.warning("op_failed", code=exc.code, error=exc.message, id=instruction_id)
            result: OperationResult[Payload] = OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
        except Exception as exc:
            logger.exception("op_failed", error=str(exc))
            result = OperationResult.fail("INTERNAL", f"{operation} failed: {exc}", elapsed_ms=timer.elapsed_ms)
        else:
            result = OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)

    ctx.services.usage.record(
        operation,
        instruction_id=instruction_id,
        duration_ms=result.elapsed_ms,
        success=result.success,
        error_code=result.error.code if result.error else None,
    )
    return result


def _require_entry(entry: Any) -> Mapping[str, Any]:
    if not isinstance(entry, Mapping):
        raise ValidationFailedError("entry must be an object", reasons=["entry must be an object"])
    return entry


def _id_of(entry: Any) -> str | None:
    if isinstance(entry, Mapping) and isinstance(entry.get("id"), str):
        return entry["id"]
    return None


# ── Mutations ────────────────────────────────────────────────────────────


async def add_instruction(
    ctx: OperationContext,
    entry: Mapping[str, Any],
    *,
    overwrite: bool = False,
    lax: bool = False,
) -> OperationResult[Payload]:
    """Create-or-skip; ``overwrite`` updates an existing record in place."""

    async def run() -> Payload:
        outcome = await ctx.store.create(_require_entry(entry), overwrite=overwrite, lax=lax)
        return outcome.to_dict()

    return await _execute(ctx, "add", run, mutates=True, instruction_id=_id_of(entry))


async def update_instruction(ctx: OperationContext, entry: Mapping[str, Any]) -> OperationResult[Payload]:
    async def run() -> Payload:
        outcome = await ctx.store.update(_require_entry(entry))
        return outcome.to_dict()

    return await _execute(ctx, "update", run, mutates=True, instruction_id=_id_of(entry))


async def remove_instructions(
    ctx: OperationContext,
    ids: Sequence[str],
    *,
    missing_ok: bool = False,
) -> OperationResult[Payload]:
    async def run() -> Payload:
        if isinstance(ids, str) or not isinstance(ids, Sequence):
            raise ValidationFailedError("ids must be a list", reasons=["ids must be a list"])
        outcome = await ctx.store.remove(ids, missing_ok=missing_ok)
        return outcome.to_dict()

    single = ids[0] if isinstance(ids, list) and len(ids) == 1 else None
    return await _execute(ctx, "remove", run, mutates=True, instruction_id=single)


async def groom_catalog(ctx: OperationContext, mode: Mapping[str, Any] | None = None) -> OperationResult[Payload]:
    """Maintenance pass; a dry run (or a dry-run context) is allowed without mutation."""
    groom_mode = GroomMode.from_params(mode)
    if ctx.dry_run:
        groom_mode.dry_run = True

    async def run() -> Payload:
        report = await ctx.store.groom(groom_mode)
        return report.to_dict()

    return await _execute(ctx, "groom", run, mutates=not groom_mode.dry_run)


async def import_instructions(
    ctx: OperationContext,
    entries: Sequence[Mapping[str, Any]],
    *,
    mode: str = "skip",
    lax: bool = False,
) -> OperationResult[Payload]:
    async def run() -> Payload:
        if not isinstance(entries, list):
            raise ValidationFailedError("entries must be a list", reasons=["entries must be a list"])
        if mode not in ("skip", "overwrite"):
            raise ValidationFailedError("invalid import mode", reasons=["mode must be skip or overwrite"])
        return await ctx.store.import_entries(entries, mode=mode, lax=lax)

    return await _execute(ctx, "import", run, mutates=True)


async def governance_update(ctx: OperationContext, params: Mapping[str, Any]) -> OperationResult[Payload]:
    rid = params.get("id")

    async def run() -> Payload:
        if not isinstance(rid, str) or not rid:
            raise ValidationFailedError("missing id", reasons=["missing id"])
        return await ctx.store.governance_update(
            rid,
            owner=params.get("owner"),
            status=params.get("status"),
            last_reviewed_at=params.get("lastReviewedAt"),
            next_review_due=params.get("nextReviewDue"),
            bump=params.get("bump"),
        )

    return await _execute(ctx, "governanceUpdate", run, mutates=True, instruction_id=rid if isinstance(rid, str) else None)


async def repair_catalog(ctx: OperationContext) -> OperationResult[Payload]:
    async def run() -> Payload:
        return await ctx.store.repair()

    return await _execute(ctx, "repair", run, mutates=True)


async def reload_catalog(ctx: OperationContext) -> OperationResult[Payload]:
    """Rescan the directory; not a mutation of records, so always allowed."""

    async def run() -> Payload:
        report = await ctx.store.load()
        return {
            "reloaded": True,
            "hash": ctx.store.catalog_hash,
            "count": len(ctx.store),
            "errors": report.errors,
            "skipped": len(report.skipped),
        }

    return await _execute(ctx, "reload", run)


async def write_snapshot(ctx: OperationContext) -> OperationResult[Payload]:
    async def run() -> Payload:
        info = await ctx.services.snapshots.write(ctx.store.records(), ctx.store.catalog_hash)
        return info.to_dict()

    return await _execute(ctx, "snapshot", run)


# ── Reads ────────────────────────────────────────────────────────────────


async def list_instructions(ctx: OperationContext, category: str | None = None) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.list_payload(ctx.store.list(category), ctx.store.catalog_hash)

    return await _execute(ctx, "list", run)


async def get_instruction(ctx: OperationContext, instruction_id: str) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.get_payload(ctx.store.get(instruction_id), ctx.store.catalog_hash)

    return await _execute(ctx, "get", run, instruction_id=instruction_id)


async def search_instructions(ctx: OperationContext, q: str) -> OperationResult[Payload]:
    async def run() -> Payload:
        if not isinstance(q, str):
            raise ValidationFailedError("q must be a string", reasons=["q must be a string"])
        found = queries.search(ctx.store.list(), q)
        return {"q": q, "hash": ctx.store.catalog_hash, "count": len(found), "items": [r.to_json_dict() for r in found]}

    return await _execute(ctx, "search", run)


async def query_instructions(ctx: OperationContext, params: Mapping[str, Any]) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.query(ctx.store.list(), params, ctx.store.catalog_hash)

    return await _execute(ctx, "query", run)


async def list_categories(ctx: OperationContext) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.categories(ctx.store.records())

    return await _execute(ctx, "categories", run)


async def diff_catalog(ctx: OperationContext, params: Mapping[str, Any]) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.diff(ctx.store.list(), ctx.store.catalog_hash, params)

    return await _execute(ctx, "diff", run)


async def export_instructions(
    ctx: OperationContext,
    params: Mapping[str, Any] | None = None,
) -> OperationResult[Payload]:
    async def run() -> Payload:
        return queries.export(ctx.store.list(), ctx.store.catalog_hash, params or {})

    return await _execute(ctx, "export", run)


async def directory_info(ctx: OperationContext) -> OperationResult[Payload]:
    async def run() -> Payload:
        return await ctx.store.dir_info()

    return await _execute(ctx, "dir", run)


async def governance_hash(ctx: OperationContext) -> OperationResult[Payload]:
    async def run() -> Payload:
        return ctx.store.governance_snapshot().to_dict()

    return await _execute(ctx, "governanceHash", run)


async def integrity_report(ctx: OperationContext) -> OperationResult[Payload]:
    """Catalog self-check against the canonical snapshot (``instructions/health``)."""

    async def run() -> Payload:
        records = ctx.store.records()
        snapshot = await ctx.services.snapshots.load_canonical()
        return build_integrity_report(
            records,
            snapshot=snapshot,
            governance=ctx.store.governance_snapshot(),
            catalog_hash=ctx.store.catalog_hash,
        )

    return await _execute(ctx, "health", run)


async def usage_stats(ctx: OperationContext, params: Mapping[str, Any] | None = None) -> OperationResult[Payload]:
    """Usage metrics; ``forceRotation`` closes the current bucket first."""

    async def run() -> Payload:
        container = ctx.services.usage.container
        if (params or {}).get("forceRotation"):
            container.force_rotation()
        else:
            container.maybe_rotate()
        return ctx.services.usage.stats()

    return await _execute(ctx, "usage", run)

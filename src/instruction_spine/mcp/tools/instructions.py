"""Instruction catalog MCP tools.

Each tool builds an operation context, calls the ops layer and returns
the flat payload on success or ``{"error": {code, message, details}}`` on
failure, so failures reach clients as data rather than transport errors.
"""

from __future__ import annotations

from typing import Any

from instruction_spine.mcp import _app
from instruction_spine.ops import instructions as ops
from instruction_spine.ops.dispatch import dispatch

mcp = _app.mcp


@mcp.tool(name="instructions/add")
async def add_instruction(entry: dict[str, Any], overwrite: bool = False, lax: bool = False) -> dict[str, Any]:
    """Create an instruction, or skip it if the id already exists.

    Args:
        entry: Instruction fields (``id``, ``title``, ``body``, ``priority`` ...)
        overwrite: Update the existing record instead of skipping
        lax: Fill missing title/priority/audience/requirement with defaults

    Returns:
        ``{id, created, overwritten, skipped, hash, verified}``
    """
    ctx = await _app.operation_context()
    result = await ops.add_instruction(ctx, entry, overwrite=overwrite, lax=lax)
    return result.payload()


@mcp.tool(name="instructions/update")
async def update_instruction(entry: dict[str, Any]) -> dict[str, Any]:
    """Update an existing instruction; body changes bump the patch version.

    Returns:
        ``{id, updated, version, changed}`` or a NOT_FOUND error
    """
    ctx = await _app.operation_context()
    result = await ops.update_instruction(ctx, entry)
    return result.payload()


@mcp.tool(name="instructions/remove")
async def remove_instructions(
    ids: list[str],
    missingOk: bool = False,  # noqa: N803
) -> dict[str, Any]:
    """Delete instructions by id; absent ids are errors unless ``missingOk``."""
    ctx = await _app.operation_context()
    result = await ops.remove_instructions(ctx, ids, missing_ok=missingOk)
    return result.payload()


@mcp.tool(name="instructions/groom")
async def groom_catalog(mode: dict[str, Any] | None = None) -> dict[str, Any]:
    """Maintenance pass over the catalog.

    Args:
        mode: ``{dryRun, removeDeprecated, mergeDuplicates}``
    """
    ctx = await _app.operation_context()
    result = await ops.groom_catalog(ctx, mode)
    return result.payload()


@mcp.tool(name="instructions/dispatch")
async def dispatch_action(
    action: str,
    params: dict[str, Any] | None = None,
    id: str | None = None,  # noqa: A002
    ids: Any = None,
    category: str | None = None,
    q: str | None = None,
    entry: dict[str, Any] | None = None,
    entries: Any = None,
    overwrite: bool | None = None,
    lax: bool | None = None,
    missingOk: bool | None = None,  # noqa: N803
    mode: Any = None,
    categoriesAll: Any = None,  # noqa: N803
    categoriesAny: Any = None,  # noqa: N803
    excludeCategories: Any = None,  # noqa: N803
    priorityMin: Any = None,  # noqa: N803
    priorityMax: Any = None,  # noqa: N803
    priorityTiers: Any = None,  # noqa: N803
    requirements: Any = None,
    text: str | None = None,
    limit: Any = None,
    offset: Any = None,
    clientHash: str | None = None,  # noqa: N803
    known: Any = None,
    metaOnly: bool | None = None,  # noqa: N803
    owner: str | None = None,
    status: str | None = None,
    lastReviewedAt: str | None = None,  # noqa: N803
    nextReviewDue: str | None = None,  # noqa: N803
    bump: str | None = None,
    operations: Any = None,
    forceRotation: bool | None = None,  # noqa: N803
) -> dict[str, Any]:
    """Generic entry point: list, get, search, query, categories, diff,
    export, dir, capabilities, batch, usage and the mutation actions.

    Action arguments travel flat beside ``action`` (``{"action": "get",
    "id": "a"}``). A nested ``params`` object is also accepted; flat keys
    win over it.
    """
    flat = {
        "id": id,
        "ids": ids,
        "category": category,
        "q": q,
        "entry": entry,
        "entries": entries,
        "overwrite": overwrite,
        "lax": lax,
        "missingOk": missingOk,
        "mode": mode,
        "categoriesAll": categoriesAll,
        "categoriesAny": categoriesAny,
        "excludeCategories": excludeCategories,
        "priorityMin": priorityMin,
        "priorityMax": priorityMax,
        "priorityTiers": priorityTiers,
        "requirements": requirements,
        "text": text,
        "limit": limit,
        "offset": offset,
        "clientHash": clientHash,
        "known": known,
        "metaOnly": metaOnly,
        "owner": owner,
        "status": status,
        "lastReviewedAt": lastReviewedAt,
        "nextReviewDue": nextReviewDue,
        "bump": bump,
        "operations": operations,
        "forceRotation": forceRotation,
    }
    merged = dict(params or {})
    merged.update({key: value for key, value in flat.items() if value is not None})
    ctx = await _app.operation_context()
    result = await dispatch(ctx, action, merged)
    return result.payload()


@mcp.tool(name="instructions/governanceHash")
async def governance_hash() -> dict[str, Any]:
    """Digest over ``{id, owner, priorityTier, version}`` of every record."""
    ctx = await _app.operation_context()
    result = await ops.governance_hash(ctx)
    return result.payload()


@mcp.tool(name="instructions/health")
async def integrity_health() -> dict[str, Any]:
    """Catalog integrity self-check (snapshot drift, leakage, body audit)."""
    ctx = await _app.operation_context()
    result = await ops.integrity_report(ctx)
    return result.payload()


@mcp.tool(name="instructions/export")
async def export_instructions(
    ids: list[str] | None = None,
    metaOnly: bool = False,  # noqa: N803
) -> dict[str, Any]:
    """Export records (optionally a subset, optionally without bodies)."""
    ctx = await _app.operation_context()
    params: dict[str, Any] = {"metaOnly": metaOnly}
    if ids is not None:
        params["ids"] = ids
    result = await ops.export_instructions(ctx, params)
    return result.payload()

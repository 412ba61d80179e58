"""
Action dispatcher behind ``instructions/dispatch``.

One generic entry point routes ``{action, ...params}`` to an ops function.
``batch`` runs a list of actions sequentially and collects each payload or
error; one failure never aborts the rest.  Unknown actions fail with
``UNKNOWN_ACTION``.

Example::

    result = await dispatch(ctx, "query", {"categoriesAny": ["security"], "limit": 10})
    if result.success:
        print(result.data["total"])
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from instruction_spine import __version__
from instruction_spine.core.errors import UnknownActionError, ValidationFailedError
from instruction_spine.ops import instructions as ops
from instruction_spine.ops.context import OperationContext
from instruction_spine.ops.result import OperationResult

Params = Mapping[str, Any]
Handler = Callable[[OperationContext, Params], Awaitable[OperationResult[dict[str, Any]]]]


def _remove_ids(params: Params) -> Any:
    if "ids" in params:
        return params["ids"]
    if isinstance(params.get("id"), str):
        return [params["id"]]
    return None


async def _get(ctx: OperationContext, p: Params) -> OperationResult[dict[str, Any]]:
    rid = p.get("id")
    if not isinstance(rid, str) or not rid:
        return OperationResult.from_error(ValidationFailedError("missing id", reasons=["missing id"]))
    return await ops.get_instruction(ctx, rid)


_HANDLERS: dict[str, Handler] = {
    "list": lambda ctx, p: ops.list_instructions(ctx, p.get("category")),
    "get": _get,
    "search": lambda ctx, p: ops.search_instructions(ctx, p.get("q", "")),
    "query": lambda ctx, p: ops.query_instructions(ctx, p),
    "categories": lambda ctx, p: ops.list_categories(ctx),
    "diff": lambda ctx, p: ops.diff_catalog(ctx, p),
    "export": lambda ctx, p: ops.export_instructions(ctx, p),
    "dir": lambda ctx, p: ops.directory_info(ctx),
    "governanceHash": lambda ctx, p: ops.governance_hash(ctx),
    "health": lambda ctx, p: ops.integrity_report(ctx),
    "usage": lambda ctx, p: ops.usage_stats(ctx, p),
    "add": lambda ctx, p: ops.add_instruction(
        ctx, p.get("entry"), overwrite=bool(p.get("overwrite", False)), lax=bool(p.get("lax", False))
    ),
    "update": lambda ctx, p: ops.update_instruction(ctx, p.get("entry")),
    "remove": lambda ctx, p: ops.remove_instructions(ctx, _remove_ids(p), missing_ok=bool(p.get("missingOk", False))),
    "groom": lambda ctx, p: ops.groom_catalog(ctx, p.get("mode")),
    "import": lambda ctx, p: ops.import_instructions(
        ctx, p.get("entries"), mode=p.get("mode", "skip"), lax=bool(p.get("lax", False))
    ),
    "governanceUpdate": lambda ctx, p: ops.governance_update(ctx, p),
    "repair": lambda ctx, p: ops.repair_catalog(ctx),
    "reload": lambda ctx, p: ops.reload_catalog(ctx),
    "snapshot": lambda ctx, p: ops.write_snapshot(ctx),
}

SUPPORTED_ACTIONS = tuple(sorted([*_HANDLERS, "capabilities", "batch"]))


def capabilities(ctx: OperationContext) -> dict[str, Any]:
    return {
        "version": __version__,
        "supportedActions": list(SUPPORTED_ACTIONS),
        "mutationEnabled": ctx.services.mutation_enabled,
    }


async def dispatch(
    ctx: OperationContext,
    action: str,
    params: Params | None = None,
) -> OperationResult[dict[str, Any]]:
    """Route one action; never raises."""
    params = params or {}
    if action == "capabilities":
        return OperationResult.ok(capabilities(ctx))
    if action == "batch":
        return await _batch(ctx, params)
    handler = _HANDLERS.get(action)
    if handler is None:
        return OperationResult.from_error(
            UnknownActionError(f"unknown action: {action!r}").with_context(action=action)
        )
    return await handler(ctx, params)


async def _batch(ctx: OperationContext, params: Params) -> OperationResult[dict[str, Any]]:
    operations = params.get("operations")
    if not isinstance(operations, list):
        return OperationResult.from_error(
            ValidationFailedError("operations must be a list", reasons=["operations must be a list"])
        )
    results: list[dict[str, Any]] = []
    for op in operations:
        if not isinstance(op, Mapping) or not isinstance(op.get("action"), str):
            results.append({"error": {"code": ValidationFailedError.code, "message": "operation requires an action"}})
            continue
        if op["action"] == "batch":
            results.append({"error": {"code": ValidationFailedError.code, "message": "nested batch not allowed"}})
            continue
        sub = {k: v for k, v in op.items() if k != "action"}
        result = await dispatch(ctx, op["action"], sub)
        results.append(result.payload())
    return OperationResult.ok({"results": results})

"""Liveness MCP tool.

``health/check`` is the reserved fast path: it never awaits the catalog
load, the structural lock or any per-id lock, so it answers immediately
even while slow mutations are queued.
"""

from __future__ import annotations

import time
from typing import Any

from instruction_spine.mcp import _app

mcp = _app.mcp


@mcp.tool(name="health/check")
async def health_check() -> dict[str, Any]:
    """Liveness check.

    Returns:
        ``status`` is always ``ok`` while the process serves requests;
        ``catalogLoaded`` is false until the first load completed.
    """
    app = _app.state()
    services = app.services
    return {
        "status": "ok",
        "version": _app._get_version(),
        "uptimeS": round(time.monotonic() - app.started_at, 3),
        "catalogLoaded": app.initialized,
        "count": len(services.store) if services is not None else 0,
        "mutationEnabled": services.mutation_enabled if services is not None else False,
    }

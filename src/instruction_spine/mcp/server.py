"""instruction-spine MCP server implementation.

Re-export hub: shared state lives in ``instruction_spine.mcp._app`` and the
tool functions in ``instruction_spine.mcp.tools.*``.

Tags: mcp, server, ai-tools, protocol
Doc-Types: API_REFERENCE, TECHNICAL_DESIGN
"""

from __future__ import annotations

import sys
from collections.abc import Sequence

from mcp.server.fastmcp import FastMCP

from instruction_spine.core.logging import configure_logging
from instruction_spine.core.settings import CatalogSettings, get_settings
from instruction_spine.core.transports.mcp import parse_transport_args, run_catalog_mcp
from instruction_spine.mcp._app import AppContext, configure, ensure_ready, lifespan, mcp  # noqa: F401

# Import tools to trigger @mcp.tool() registration
from instruction_spine.mcp.tools.health import health_check  # noqa: F401
from instruction_spine.mcp.tools.instructions import (  # noqa: F401
    add_instruction,
    dispatch_action,
    export_instructions,
    governance_hash,
    groom_catalog,
    integrity_health,
    remove_instructions,
    update_instruction,
)

DEFAULT_PORT = 8110


def create_server() -> FastMCP:
    """Create and return the MCP server instance."""
    return mcp


def run(argv: Sequence[str] | None = None, *, settings: CatalogSettings | None = None) -> None:
    """Run the MCP server (entry point for console script)."""
    settings = settings or get_settings()
    configure_logging(level=settings.effective_log_level, json_format=settings.json_logs())
    configure(settings)
    transport, port = parse_transport_args(sys.argv[1:] if argv is None else argv, DEFAULT_PORT)
    run_catalog_mcp(mcp, transport=transport, port=port)

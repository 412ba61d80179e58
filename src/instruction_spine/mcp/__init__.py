"""instruction-spine MCP server.

Model Context Protocol server exposing the governed instruction catalog
as AI-callable tools.

Usage::

    # stdio mode (default)
    instruction-spine serve

    # HTTP mode
    instruction-spine serve --transport http --port 8110
"""

from instruction_spine.mcp.server import create_server, mcp, run

__all__ = [
    "create_server",
    "mcp",
    "run",
]

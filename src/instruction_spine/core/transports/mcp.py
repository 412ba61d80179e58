"""FastMCP scaffold for the instruction catalog server.

The server module only has to:

1. Define a lifespan that yields its ``AppContext``
2. Register tools on the returned ``FastMCP`` instance
3. Call ``run_catalog_mcp()`` from its console script entry point

Usage::

    from instruction_spine.core.transports.mcp import (
        create_catalog_mcp,
        parse_transport_args,
        run_catalog_mcp,
    )

    mcp = create_catalog_mcp(
        name="instruction-spine",
        instructions="Governed instruction catalog ...",
        lifespan=app_lifespan,
    )

    @mcp.tool(name="instructions/add")
    async def instructions_add(...): ...

    def run(argv):
        transport, port = parse_transport_args(argv, default_port=8110)
        run_catalog_mcp(mcp, transport=transport, port=port)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from instruction_spine.core.logging import get_logger

logger = get_logger("instruction_spine.core.mcp")

TRANSPORTS = ("stdio", "http", "streamable-http")


def create_catalog_mcp(
    name: str,
    instructions: str,
    lifespan: Callable[..., Any],
) -> FastMCP:
    """Create a FastMCP server instance.

    Parameters
    ----------
    name : str
        MCP server name (e.g. "instruction-spine").
    instructions : str
        Natural language description of the server's capabilities.
    lifespan : async context manager
        Lifespan factory that yields an AppContext dataclass.
    """
    return FastMCP(
        name,
        instructions=instructions,
        lifespan=lifespan,
    )


def parse_transport_args(argv: Sequence[str], default_port: int) -> tuple[str, int]:
    """Pull ``--transport`` / ``--port`` out of an argv list; ignore the rest."""
    transport = "stdio"
    port = default_port
    args = list(argv)

    i = 0
    while i < len(args):
        if args[i] in ("--transport", "-t") and i + 1 < len(args):
            transport = args[i + 1]
            i += 2
        elif args[i] in ("--port", "-p") and i + 1 < len(args):
            port = int(args[i + 1])
            i += 2
        else:
            i += 1
    return transport, port


def run_catalog_mcp(
    mcp: FastMCP,
    *,
    transport: str = "stdio",
    port: int = 8110,
    host: str = "0.0.0.0",
) -> None:
    """Start the server in stdio or streamable-http mode."""
    if transport not in TRANSPORTS:
        raise ValueError(f"unknown transport {transport!r}; expected one of {TRANSPORTS}")

    if transport in ("http", "streamable-http"):
        mcp.settings.host = host
        mcp.settings.port = port
        logger.info("mcp.starting", server=mcp.name, transport="streamable-http", port=port)
        mcp.run(transport="streamable-http")
    else:
        logger.info("mcp.starting", server=mcp.name, transport="stdio")
        mcp.run(transport="stdio")

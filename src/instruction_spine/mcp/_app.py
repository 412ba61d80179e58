"""Shared MCP application state -- server instance, services, helpers.

The catalog is loaded exactly once per process, either by the lifespan or
by the first tool call that needs it (whichever comes first).

Tags: mcp, server, internal
Doc-Types: TECHNICAL_DESIGN
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from instruction_spine.core.logging import get_logger
from instruction_spine.core.settings import CatalogSettings, get_settings
from instruction_spine.core.transports.mcp import create_catalog_mcp
from instruction_spine.ops.context import CatalogServices, OperationContext, build_services

logger = get_logger("instruction_spine.mcp")


@dataclass
class AppContext:
    """Application context for the MCP server."""

    services: CatalogServices | None = None
    initialized: bool = False
    load_report: dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    ready_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


_state = AppContext()


def configure(
    settings: CatalogSettings | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> AppContext:
    """(Re)build the process services; the catalog loads on the next ``ensure_ready``."""
    global _state
    _state = AppContext(services=build_services(settings or get_settings(), clock=clock))
    return _state


def state() -> AppContext:
    return _state


async def ensure_ready() -> CatalogServices:
    """Return loaded services, loading the catalog on first use."""
    current = _state if _state.services is not None else configure()
    assert current.services is not None
    if current.initialized:
        return current.services
    async with current.ready_lock:
        if not current.initialized:
            report = await current.services.store.load()
            await current.services.usage.restore()
            current.load_report = report.to_dict()
            current.initialized = True
            logger.info("mcp.catalog_ready", count=len(current.services.store))
    return current.services


async def operation_context() -> OperationContext:
    return OperationContext(services=await ensure_ready(), caller="mcp")


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """MCP server lifespan manager."""
    services = await ensure_ready()
    try:
        yield _state
    finally:
        await services.usage.flush()


# Create MCP server instance
mcp = create_catalog_mcp(
    name="instruction-spine",
    instructions="""
Governed catalog of versioned instruction documents.

Capabilities:
- Add, update and remove instructions (when mutation is enabled)
- List, search, query and diff the catalog via instructions/dispatch
- Governance hash and integrity self-check for drift detection
- Groom the catalog (hash repair, category normalization, review dates)
- Liveness via health/check
""",
    lifespan=lifespan,
)


def _get_version() -> str:
    from instruction_spine import __version__

    return __version__

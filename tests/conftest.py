"""
Shared pytest fixtures for instruction-spine tests.

This module provides:
- A deterministic, advanceable clock
- Per-test settings rooted in ``tmp_path`` (mutation enabled)
- A catalog store, and a loaded one
- Engine services and an operation context over that store
- ``make_entry`` factory for minimal valid instruction input
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from instruction_spine.catalog.store import CatalogStore
from instruction_spine.core.settings import CatalogSettings, clear_settings_cache
from instruction_spine.ops.context import CatalogServices, OperationContext, build_services


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_structlog() -> Iterator[None]:
    """Drop structlog config and module-level cached loggers after each test.

    ``configure_logging`` binds the current ``sys.stderr`` (a per-test capture
    stream under pytest) and enables ``cache_logger_on_first_use``, so module
    loggers would otherwise keep writing to a closed stream in later tests.
    """
    import sys

    import structlog
    from structlog._config import BoundLoggerLazyProxy

    yield
    structlog.reset_defaults()
    for name, module in list(sys.modules.items()):
        if not name.startswith("instruction_spine") or module is None:
            continue
        for value in list(vars(module).values()):
            if isinstance(value, BoundLoggerLazyProxy):
                vars(value).pop("bind", None)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Settings / store
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """No ambient INSTRUCTIONS_* / MCP_* variables and no cached settings."""
    import os

    for key in list(os.environ):
        if key.startswith("INSTRUCTIONS_") or key == "MCP_ENABLE_MUTATION":
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


def settings_for(root: Path, **overrides: Any) -> CatalogSettings:
    values: dict[str, Any] = {
        "dir": root / "instructions",
        "snapshot_dir": root / "snapshots",
        "owners_file": root / "owners.json",
        "audit_log": str(root / "logs" / "audit.jsonl"),
        "enable_mutation": True,
    }
    values.update(overrides)
    return CatalogSettings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> CatalogSettings:
    return settings_for(tmp_path)


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., CatalogSettings]:
    def factory(**overrides: Any) -> CatalogSettings:
        return settings_for(tmp_path, **overrides)

    return factory


@pytest.fixture
def store(settings: CatalogSettings, clock: FakeClock) -> CatalogStore:
    return CatalogStore.from_settings(settings, clock=clock)


@pytest_asyncio.fixture
async def loaded_store(store: CatalogStore) -> CatalogStore:
    await store.load()
    return store


@pytest_asyncio.fixture
async def services(settings: CatalogSettings, clock: FakeClock) -> CatalogServices:
    """Engine services over a loaded store, driven by the fake clock."""
    built = build_services(settings, clock=clock)
    await built.store.load()
    return built


@pytest.fixture
def op_ctx(services: CatalogServices) -> OperationContext:
    return OperationContext(services=services, caller="test")


def _make_entry(rid: str, body: str = "Do the thing.", **fields: Any) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": rid, "title": f"Title {rid}", "body": body, "priority": 50}
    entry.update(fields)
    return entry


@pytest.fixture
def make_entry():
    """Factory for minimal valid add input (P3 / optional / unowned passes every gate)."""
    return _make_entry

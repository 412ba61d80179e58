"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument.  The context carries the process services (store, usage
aggregator, snapshots, settings), caller identity, dry-run flag, and
arbitrary metadata.  Services are constructed once per process by
:func:`build_services` and passed explicitly; there is no module-level
singleton inside the engine.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from instruction_spine.catalog.models import utc_now
from instruction_spine.catalog.snapshots import SnapshotManager
from instruction_spine.catalog.store import CatalogStore
from instruction_spine.core.settings import CatalogSettings
from instruction_spine.usage.buckets import UsageAggregator


@dataclass
class CatalogServices:
    """Process-wide collaborators shared by every operation."""

    settings: CatalogSettings
    store: CatalogStore
    usage: UsageAggregator
    snapshots: SnapshotManager
    started_at: float = field(default_factory=time.monotonic)

    @property
    def mutation_enabled(self) -> bool:
        return self.settings.enable_mutation


def build_services(
    settings: CatalogSettings,
    *,
    clock: Callable[[], datetime] | None = None,
) -> CatalogServices:
    """Wire the engine from settings; ``clock`` drives every time source."""
    if clock is None:
        record_clock: Callable[[], datetime] = utc_now
        usage_clock: Callable[[], float] = time.time
    else:
        record_clock = clock
        usage_clock = lambda: clock().timestamp()  # noqa: E731
    snapshot_kw: dict[str, Any] = {"clock": clock} if clock is not None else {}
    return CatalogServices(
        settings=settings,
        store=CatalogStore.from_settings(settings, clock=record_clock),
        usage=UsageAggregator.from_settings(settings, clock=usage_clock),
        snapshots=SnapshotManager(
            settings.snapshot_dir,
            retention=settings.snapshot_retention,
            **snapshot_kw,
        ),
    )


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        services: Process services (store, usage, snapshots, settings).
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"mcp"``, ``"cli"`` or ``"sdk"``.
        user: Optional caller identifier.
        dry_run: When ``True``, groom computes a preview without side effects.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    services: CatalogServices
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def store(self) -> CatalogStore:
        return self.services.store

    @property
    def settings(self) -> CatalogSettings:
        return self.services.settings

"""
Catalog snapshots - periodic full dumps outside the live index.

Layout under the snapshot directory::

    canonical-instructions.json         latest full dump (integrity baseline)
    canonical-instructions.json.sha256  catalog hash of that dump
    snapshot-<UTC timestamp>Z.json      dated dumps, newest ``retention`` kept

Snapshots are never read back into the live index; ``instructions/health``
compares the live catalog against the canonical dump to report missing,
extra and changed records.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from instruction_spine.catalog.models import InstructionRecord
from instruction_spine.catalog.storage import atomic_write_text, dump_json
from instruction_spine.core.logging import get_logger

logger = get_logger(__name__)

CANONICAL_NAME = "canonical-instructions.json"
_DATED = re.compile(r"^snapshot-\d{8}T\d{12}Z\.json$")


@dataclass(slots=True)
class SnapshotInfo:
    path: str
    hash: str
    count: int
    pruned: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "hash": self.hash, "count": self.count, "pruned": self.pruned}


class SnapshotManager:
    """Writes, prunes and reads catalog snapshots."""

    def __init__(
        self,
        directory: Path,
        *,
        retention: int = 30,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.directory = Path(directory)
        self.retention = retention
        self._clock = clock

    @property
    def canonical_path(self) -> Path:
        return self.directory / CANONICAL_NAME

    async def write(self, records: Sequence[InstructionRecord], catalog_hash: str) -> SnapshotInfo:
        return await asyncio.to_thread(self._write_sync, list(records), catalog_hash)

    async def load_canonical(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._load_canonical_sync)

    def dated_snapshots(self) -> list[Path]:
        """Dated snapshot files, newest first."""
        if not self.directory.is_dir():
            return []
        names = sorted((p.name for p in self.directory.iterdir() if _DATED.match(p.name)), reverse=True)
        return [self.directory / name for name in names]

    def _write_sync(self, records: list[InstructionRecord], catalog_hash: str) -> SnapshotInfo:
        now = self._clock()
        items = [r.to_json_dict() for r in sorted(records, key=lambda r: r.id)]
        document = {
            "generatedAt": now.isoformat(),
            "count": len(items),
            "hash": catalog_hash,
            "items": items,
        }
        text = dump_json(document)
        atomic_write_text(self.canonical_path, text)
        atomic_write_text(self.canonical_path.with_name(CANONICAL_NAME + ".sha256"), catalog_hash + "\n")

        dated = self.directory / f"snapshot-{now.strftime('%Y%m%dT%H%M%S%f')}Z.json"
        atomic_write_text(dated, text)

        pruned: list[str] = []
        for stale in self.dated_snapshots()[self.retention:]:
            stale.unlink(missing_ok=True)
            pruned.append(stale.name)

        logger.info("snapshot.written", path=str(dated), count=len(items), pruned=len(pruned))
        return SnapshotInfo(path=str(dated), hash=catalog_hash, count=len(items), pruned=pruned)

    def _load_canonical_sync(self) -> dict[str, Any] | None:
        path = self.canonical_path
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("snapshot.unreadable", path=str(path), error=str(exc))
            return None
        return data if isinstance(data, dict) else None

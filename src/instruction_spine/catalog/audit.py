"""Append-only JSONL audit trail of catalog mutations.

Each line is ``{"ts", "action", "ids", "meta"}``.  Audit writes are
best-effort: a failure is logged and never fails the mutation that
triggered it.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from instruction_spine.catalog.models import utc_now
from instruction_spine.core.logging import get_logger

logger = get_logger(__name__)


class AuditLog:
    def __init__(self, path: Path | None, *, clock: Callable[[], datetime] = utc_now):
        self.path = path
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.path is not None

    async def record(self, action: str, ids: Iterable[str], **meta: Any) -> None:
        if self.path is None:
            return
        line = json.dumps(
            {
                "ts": self._clock().isoformat(),
                "action": action,
                "ids": list(ids),
                "meta": meta,
            },
            default=str,
            ensure_ascii=False,
        )
        try:
            await asyncio.to_thread(self._append, line)
        except OSError as exc:
            logger.warning("audit.write_failed", path=str(self.path), action=action, error=str(exc))

    def _append(self, line: str) -> None:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def read(self) -> list[dict[str, Any]]:
        """All audit entries, oldest first (tests and the CLI)."""
        if self.path is None or not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

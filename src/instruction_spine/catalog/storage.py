"""
Record storage - the embedded key-value layer under the catalog store.

``RecordStorage`` is the contract the ``CatalogStore`` depends on: scan all
records once, write one record atomically, delete one record.
``DirectoryStorage`` implements it as one ``<id>.json`` file per record; an
embedded KV engine can replace it without touching the store.

Persistence discipline:
    every write lands in a unique temp file beside the target and is then
    ``os.replace``-d over it, so a reader never observes a partially written
    file.  Transient ``EPERM`` / ``EBUSY`` / ``EACCES`` failures (virus
    scanners, editors holding a handle) are retried with exponential
    backoff and jitter; the temp file is always removed on failure.

Blocking file-system calls run in worker threads via ``asyncio.to_thread``
so the event loop keeps serving reads and health checks meanwhile.
"""

from __future__ import annotations

import asyncio
import errno
import json
import os
import random
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from instruction_spine.catalog.bootstrap import is_ingestible
from instruction_spine.core.errors import IOFailureError
from instruction_spine.core.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRNOS = frozenset({errno.EPERM, errno.EBUSY, errno.EACCES})


@dataclass(slots=True)
class StoredRecord:
    """One scanned file: parsed JSON or the reason it could not be parsed."""

    key: str
    location: str
    data: dict[str, Any] | None = None
    error: str | None = None


class RecordStorage(Protocol):
    """Load/flush contract for record persistence."""

    @property
    def location(self) -> str: ...

    async def scan(self) -> tuple[list[StoredRecord], int]:
        """Return parsed candidates and the number of entries scanned."""
        ...

    async def write(self, key: str, payload: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self) -> list[str]: ...


# ── Atomic write helpers ─────────────────────────────────────────────────


def atomic_write_text(
    path: Path,
    text: str,
    *,
    attempts: int = 5,
    base_delay: float = 0.01,
) -> None:
    """Write ``text`` to ``path`` via temp file + rename.

    Raises:
        IOFailureError: once retries are exhausted or on a non-transient error.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    last_error: OSError | None = None

    for attempt in range(1, attempts + 1):
        tmp = path.with_name(f".{path.name}.{secrets.token_hex(6)}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
            return
        except OSError as exc:
            last_error = exc
            tmp.unlink(missing_ok=True)
            if exc.errno not in TRANSIENT_ERRNOS or attempt == attempts:
                break
            delay = base_delay * (2 ** (attempt - 1))
            time.sleep(delay + random.uniform(0, delay))

    raise IOFailureError(f"failed to write {path.name}: {last_error}", cause=last_error).with_context(
        path=str(path)
    )


def dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


# ── Directory implementation ─────────────────────────────────────────────


class DirectoryStorage:
    """One JSON file per record under a single directory."""

    def __init__(self, directory: Path, *, attempts: int = 5, base_delay: float = 0.01):
        self.directory = Path(directory)
        self.attempts = attempts
        self.base_delay = base_delay

    @property
    def location(self) -> str:
        return str(self.directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    async def scan(self) -> tuple[list[StoredRecord], int]:
        return await asyncio.to_thread(self._scan_sync)

    async def write(self, key: str, payload: dict[str, Any]) -> None:
        await asyncio.to_thread(
            atomic_write_text,
            self.path_for(key),
            dump_json(payload),
            attempts=self.attempts,
            base_delay=self.base_delay,
        )

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)

    def _keys_sync(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.name for p in self.directory.iterdir() if p.is_file() and p.suffix == ".json")

    def _scan_sync(self) -> tuple[list[StoredRecord], int]:
        if not self.directory.is_dir():
            self.directory.mkdir(parents=True, exist_ok=True)
            return [], 0

        scanned = 0
        found: list[StoredRecord] = []
        for path in sorted(self.directory.iterdir()):
            if not path.is_file():
                continue
            scanned += 1
            if not is_ingestible(path.name):
                continue
            entry = StoredRecord(key=path.stem, location=str(path))
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ValueError) as exc:
                entry.error = f"{type(exc).__name__}: {exc}"
            else:
                if isinstance(data, dict):
                    entry.data = data
                else:
                    entry.error = "top-level JSON value is not an object"
            found.append(entry)
        return found, scanned

    def _delete_sync(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise IOFailureError(f"failed to delete {path.name}: {exc}", cause=exc).with_context(
                path=str(path), instruction_id=key
            ) from exc
        return True

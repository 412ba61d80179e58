"""
Mutation serializer - per-id FIFO locks under a shared/exclusive catalog lock.

Architecture:
    ::

        create / update / remove(ids)      groom / import / reload
                 │                                  │
                 ▼                                  ▼
        structural lock (shared)          structural lock (exclusive)
                 │                          waits for in-flight per-id
                 ▼                          mutations, blocks new ones
        per-id asyncio.Lock (FIFO)
                 │
                 ▼
           write + index swap

Reads (``get`` / ``list`` / health) never touch either lock; they read the
immutable index snapshot the store swapped in last.

Per-id locks are acquired in sorted order so multi-id removals cannot
deadlock with each other.  Lock objects are reference-counted and dropped
once nobody holds or waits on them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager


class SharedExclusiveLock:
    """Asyncio readers/writer lock that prefers waiting writers.

    Writer preference keeps a steady stream of single-record mutations from
    starving a queued groom pass.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._shared = 0
        self._exclusive = False
        self._waiting_exclusive = 0

    @property
    def held_shared(self) -> int:
        return self._shared

    @property
    def held_exclusive(self) -> bool:
        return self._exclusive

    async def acquire_shared(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._exclusive and self._waiting_exclusive == 0)
            self._shared += 1

    async def release_shared(self) -> None:
        async with self._cond:
            self._shared -= 1
            if self._shared == 0:
                self._cond.notify_all()

    async def acquire_exclusive(self) -> None:
        async with self._cond:
            self._waiting_exclusive += 1
            try:
                await self._cond.wait_for(lambda: not self._exclusive and self._shared == 0)
            finally:
                self._waiting_exclusive -= 1
                self._cond.notify_all()
            self._exclusive = True

    async def release_exclusive(self) -> None:
        async with self._cond:
            self._exclusive = False
            self._cond.notify_all()


class MutationSerializer:
    """Serializes catalog mutations."""

    def __init__(self) -> None:
        self._structural = SharedExclusiveLock()
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def is_locked(self, instruction_id: str) -> bool:
        lock = self._locks.get(instruction_id)
        return lock is not None and lock.locked()

    @property
    def structural_held(self) -> bool:
        return self._structural.held_exclusive

    @asynccontextmanager
    async def records(self, ids: Iterable[str]) -> AsyncIterator[None]:
        """Hold the per-id locks for ``ids`` (FIFO per id)."""
        keys = sorted(set(ids))
        await self._structural.acquire_shared()
        acquired: list[str] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)
            await self._structural.release_shared()

    @asynccontextmanager
    async def structural(self) -> AsyncIterator[None]:
        """Exclude every per-id mutation for the duration of a bulk pass."""
        await self._structural.acquire_exclusive()
        try:
            yield
        finally:
            await self._structural.release_exclusive()

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._refs[key] - 1
        if remaining:
            self._refs[key] = remaining
        else:
            del self._refs[key]
            del self._locks[key]

"""Per-file mutual exclusion for read-modify-write cycles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from kgmem.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class PathLocks:
    """One ``asyncio.Lock`` per resolved file path, created on demand.

    Waiters queue on the lock instead of failing. A lock is dropped from the
    registry once nobody holds or awaits it, so the registry only grows with
    the number of files being written concurrently.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, *paths: Path) -> AsyncIterator[None]:
        """Hold the locks for all ``paths``, acquired in sorted order."""
        keys = sorted({str(p) for p in paths})
        acquired: list[str] = []
        try:
            for key in keys:
                await self._acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)

    def is_locked(self, path: Path) -> bool:
        lock = self._locks.get(str(path))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    async def _acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if self.timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._forget(key)
            logger.warning("Timed out after %.1fs waiting for lock on %s", self.timeout, key)
            raise LockTimeoutError(f"Timed out waiting for lock on {key}") from None
        except BaseException:
            self._forget(key)
            raise

    def _release(self, key: str) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

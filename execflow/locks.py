"""Per-key asyncio locks used to serialize writers within one process."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from .exceptions import LockTimeoutError


class KeyedLocks:
    """Hand out one :class:`asyncio.Lock` per key.

    Locks are created on demand and dropped once nobody holds or waits for
    them, so the registry does not grow with the number of entities seen.
    """

    def __init__(self, timeout: Optional[float] = 5.0) -> None:
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise LockTimeoutError(key, self.timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @staticmethod
    def execution_key(execution_id: str) -> str:
        return f"execution:{execution_id}"

    @staticmethod
    def record_key(record_id: str) -> str:
        return f"record:{record_id}"

# mlm_system/utils/keyed_lock.py
"""
Per-key asyncio locks.

Registrations run concurrently on one event loop; postings and reconciliation
for the same recipient must not interleave. One lock per key, created lazily,
dropped once nobody holds or waits on it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """Mutual exclusion scoped to a key, e.g. (memberId, level)."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def isHeld(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self):
        return len(self._locks)


# Shared across services in one process
recipientLocks = KeyedLock()

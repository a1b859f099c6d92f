# mlm_system/utils/level_cache.py
"""
TTL cache for per-member level statistics.

Injected into StatsService and invalidated by the distributor for every
chain member after a registration.
"""
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class LevelStatsCache:
    """
    Member-keyed cache with time-to-live and explicit invalidation.

    Args:
        ttlSeconds: Entry lifetime; 0 disables caching
        maxEntries: Oldest entries are evicted past this size
        clock: Time source (monotonic seconds), replaceable in tests
    """

    def __init__(
            self,
            ttlSeconds: float = 300,
            maxEntries: int = 100,
            clock: Callable[[], float] = time.monotonic
    ):
        self.ttlSeconds = ttlSeconds
        self.maxEntries = maxEntries
        self._clock = clock
        self._entries: Dict[int, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, memberId: int) -> Optional[Any]:
        entry = self._entries.get(memberId)
        if entry is None:
            self.misses += 1
            return None

        storedAt, value = entry
        if self._clock() - storedAt >= self.ttlSeconds:
            del self._entries[memberId]
            self.misses += 1
            logger.debug(f"Level stats cache expired for member {memberId}")
            return None

        self.hits += 1
        return value

    def set(self, memberId: int, value: Any) -> None:
        if self.ttlSeconds <= 0:
            return

        self._entries[memberId] = (self._clock(), value)

        if len(self._entries) > self.maxEntries:
            # Evict oldest entries
            overflow = len(self._entries) - self.maxEntries
            oldest = sorted(self._entries.items(), key=lambda item: item[1][0])[:overflow]
            for key, _ in oldest:
                del self._entries[key]

    def invalidate(self, memberId: int) -> None:
        if self._entries.pop(memberId, None) is not None:
            logger.debug(f"Level stats cache invalidated for member {memberId}")

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, memberId: int) -> bool:
        return memberId in self._entries

    def __len__(self):
        return len(self._entries)

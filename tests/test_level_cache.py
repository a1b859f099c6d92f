# tests/test_level_cache.py
"""
Tests for LevelStatsCache - TTL, invalidation, eviction.
"""
from mlm_system.utils.level_cache import LevelStatsCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_cache(ttl=300, maxEntries=100):
    clock = FakeClock()
    return LevelStatsCache(ttlSeconds=ttl, maxEntries=maxEntries, clock=clock), clock


class TestLevelStatsCache:

    def test_hit_within_ttl(self):
        cache, clock = make_cache()
        cache.set(1, "stats")
        clock.advance(299)

        assert cache.get(1) == "stats"
        assert cache.hits == 1

    def test_expired_after_ttl(self):
        cache, clock = make_cache()
        cache.set(1, "stats")
        clock.advance(300)

        assert cache.get(1) is None
        assert 1 not in cache
        assert cache.misses == 1

    def test_invalidate(self):
        cache, _ = make_cache()
        cache.set(1, "a")
        cache.set(2, "b")

        cache.invalidate(1)
        cache.invalidate(99)

        assert cache.get(1) is None
        assert cache.get(2) == "b"

    def test_zero_ttl_disables(self):
        cache, _ = make_cache(ttl=0)
        cache.set(1, "stats")

        assert len(cache) == 0
        assert cache.get(1) is None

    def test_oldest_evicted(self):
        cache, clock = make_cache(maxEntries=2)
        cache.set(1, "a")
        clock.advance(1)
        cache.set(2, "b")
        clock.advance(1)
        cache.set(3, "c")

        assert len(cache) == 2
        assert 1 not in cache
        assert 3 in cache

    def test_clear(self):
        cache, _ = make_cache()
        cache.set(1, "a")
        cache.clear()

        assert len(cache) == 0

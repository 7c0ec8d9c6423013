"""
Tests for the identity TTL cache.
"""

from mcp_gateway.services.cache import InMemoryTTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryTTLCache:
    async def test_get_missing(self):
        cache: InMemoryTTLCache[str] = InMemoryTTLCache(ttl_seconds=300)
        assert await cache.get("nope") is None

    async def test_set_then_get(self):
        cache: InMemoryTTLCache[str] = InMemoryTTLCache(ttl_seconds=300)
        await cache.set("k", "v")
        assert await cache.get("k") == "v"

    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache: InMemoryTTLCache[str] = InMemoryTTLCache(ttl_seconds=300, clock=clock)
        await cache.set("k", "v")

        clock.now += 299
        assert await cache.get("k") == "v"

        clock.now += 1
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_per_entry_ttl(self):
        clock = FakeClock()
        cache: InMemoryTTLCache[str] = InMemoryTTLCache(ttl_seconds=300, clock=clock)
        await cache.set("short", "v", ttl_seconds=10)

        clock.now += 11
        assert await cache.get("short") is None

    async def test_invalidate_and_clear(self):
        cache: InMemoryTTLCache[str] = InMemoryTTLCache(ttl_seconds=300)
        await cache.set("a", "1")
        await cache.set("b", "2")

        await cache.invalidate("a")
        assert await cache.get("a") is None
        assert await cache.get("b") == "2"

        await cache.clear()
        assert len(cache) == 0

    async def test_cleanup_drops_expired_when_full(self):
        clock = FakeClock()
        cache: InMemoryTTLCache[int] = InMemoryTTLCache(ttl_seconds=1, clock=clock)
        cache._MAX_SIZE = 3
        for i in range(3):
            await cache.set(f"k{i}", i)

        clock.now += 5
        await cache.set("fresh", 99)

        assert len(cache) == 1
        assert await cache.get("fresh") == 99

    async def test_full_cache_evicts_oldest_live_entry(self):
        cache: InMemoryTTLCache[int] = InMemoryTTLCache(ttl_seconds=300)
        cache._MAX_SIZE = 3
        for i in range(3):
            await cache.set(f"k{i}", i)

        await cache.set("k3", 3)

        assert len(cache) == 3
        assert await cache.get("k0") is None
        assert [await cache.get(f"k{i}") for i in (1, 2, 3)] == [1, 2, 3]

    async def test_rewritten_key_is_not_evicted_first(self):
        cache: InMemoryTTLCache[int] = InMemoryTTLCache(ttl_seconds=300)
        cache._MAX_SIZE = 3
        for i in range(3):
            await cache.set(f"k{i}", i)

        await cache.set("k0", 10)
        await cache.set("k3", 3)

        assert await cache.get("k0") == 10
        assert await cache.get("k1") is None
        assert len(cache) == 3

    async def test_size_never_exceeds_limit(self):
        cache: InMemoryTTLCache[int] = InMemoryTTLCache(ttl_seconds=300)
        cache._MAX_SIZE = 5
        for i in range(50):
            await cache.set(f"k{i}", i)

        assert len(cache) == 5

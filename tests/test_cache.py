"""Tests for the read cache."""

import pytest

from abengine.config import Settings
from abengine.services.cache import (
    ACTIVE_TESTS_KEY,
    NullCache,
    TTLCache,
    build_cache,
    detail_key,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ttl_cache(clock):
    return TTLCache(ttl_seconds=300, clock=clock)


def test_keys():
    assert detail_key("abc") == "test:abc"
    assert ACTIVE_TESTS_KEY != detail_key("active_tests")


@pytest.mark.asyncio
async def test_set_then_get(ttl_cache):
    assert await ttl_cache.get("k") is None
    assert await ttl_cache.set("k", {"v": 1}) is True
    assert await ttl_cache.get("k") == {"v": 1}
    assert len(ttl_cache) == 1


@pytest.mark.asyncio
async def test_entries_expire(ttl_cache, clock):
    await ttl_cache.set("k", "value")
    clock.now += 299
    assert await ttl_cache.get("k") == "value"
    clock.now += 1
    assert await ttl_cache.get("k") is None
    assert len(ttl_cache) == 0


@pytest.mark.asyncio
async def test_invalidate_removes_only_named_keys(ttl_cache):
    await ttl_cache.set("a", 1)
    await ttl_cache.set("b", 2)
    await ttl_cache.invalidate("a", "missing")
    assert await ttl_cache.get("a") is None
    assert await ttl_cache.get("b") == 2


@pytest.mark.asyncio
async def test_stale_reader_cannot_repopulate(ttl_cache):
    gen = await ttl_cache.generation("k")
    # a write lands while the reader is still loading
    await ttl_cache.invalidate("k")
    assert await ttl_cache.set("k", "stale", generation=gen) is False
    assert await ttl_cache.get("k") is None

    fresh_gen = await ttl_cache.generation("k")
    assert await ttl_cache.set("k", "fresh", generation=fresh_gen) is True
    assert await ttl_cache.get("k") == "fresh"


@pytest.mark.asyncio
async def test_clear(ttl_cache):
    await ttl_cache.set("a", 1)
    gen = await ttl_cache.generation("a")
    await ttl_cache.clear()
    assert await ttl_cache.get("a") is None
    assert await ttl_cache.set("a", 1, generation=gen) is False


@pytest.mark.asyncio
async def test_null_cache_holds_nothing():
    cache = NullCache()
    assert await cache.set("k", 1) is False
    assert await cache.get("k") is None
    assert await cache.generation("k") == 0
    await cache.invalidate("k")
    await cache.clear()
    assert len(cache) == 0


def test_build_cache_respects_settings():
    assert isinstance(build_cache(Settings(cache_enabled=False)), NullCache)
    cache = build_cache(Settings(cache_enabled=True, cache_ttl_seconds=12))
    assert isinstance(cache, TTLCache)
    assert cache.ttl_seconds == 12


@pytest.mark.asyncio
async def test_reads_of_unknown_keys_track_nothing(ttl_cache):
    for i in range(500):
        key = detail_key(f"missing-{i}")
        gen = await ttl_cache.generation(key)
        assert await ttl_cache.get(key) is None
        await ttl_cache.set(key, None, generation=gen)
    assert ttl_cache.tracked_keys == 0


@pytest.mark.asyncio
async def test_invalidating_other_key_keeps_reader(ttl_cache):
    gen = await ttl_cache.generation("a")
    await ttl_cache.invalidate("b")
    assert await ttl_cache.set("a", 1, generation=gen) is True


@pytest.mark.asyncio
async def test_tracking_is_bounded(clock):
    cache = TTLCache(ttl_seconds=300, clock=clock, max_tracked=4)
    gen = await cache.generation("k0")
    for i in range(10):
        await cache.invalidate(f"k{i}")
    assert cache.tracked_keys == 4

    # k0 was forgotten, its stale reader is still refused
    assert await cache.set("k0", "stale", generation=gen) is False
    fresh = await cache.generation("k0")
    assert await cache.set("k0", "fresh", generation=fresh) is True

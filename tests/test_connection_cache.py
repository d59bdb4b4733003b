"""Tests for the layered connection status cache."""
import json

import pytest

from outreach.services.connection_cache import (
    ConnectionStatusCache,
    MemoryStatusTier,
    RedisStatusTier,
    StatusEntry,
)

from tests.fakes import FakeClock, FakeRedis


@pytest.fixture
def tiers(fake_redis):
    return MemoryStatusTier(30 * 60), RedisStatusTier(fake_redis, 2 * 60 * 60)


@pytest.mark.asyncio
async def test_set_writes_every_tier(tiers, fake_redis):
    clock = FakeClock(start=1000.0)
    cache = ConnectionStatusCache(list(tiers), clock=clock)

    entry = await cache.set("u1", True)

    assert entry == StatusEntry(connected=True, checked_at=1000.0)
    assert await tiers[0].get("u1") == entry
    stored = json.loads(fake_redis.store[f"{RedisStatusTier.KEY_PREFIX}u1"])
    assert stored == {"connected": True, "checked_at": 1000.0}


@pytest.mark.asyncio
async def test_false_answers_are_cached_too(tiers):
    cache = ConnectionStatusCache(list(tiers), clock=FakeClock())
    await cache.set("u1", False)

    entry = await cache.get("u1")
    assert entry is not None
    assert entry.connected is False


@pytest.mark.asyncio
async def test_expired_entries_are_absent(tiers):
    clock = FakeClock()
    cache = ConnectionStatusCache(list(tiers), clock=clock)
    await cache.set("u1", True)

    clock.advance(2 * 60 * 60)
    assert await cache.get("u1") is None


@pytest.mark.asyncio
async def test_lower_tier_hit_backfills_upper_tier(tiers):
    memory, redis_tier = tiers
    clock = FakeClock()
    cache = ConnectionStatusCache([memory, redis_tier], clock=clock)
    await redis_tier.set("u1", StatusEntry(connected=True, checked_at=clock()))

    assert (await cache.get("u1")).connected is True
    assert await memory.get("u1") is not None


@pytest.mark.asyncio
async def test_tier_failure_is_a_miss(tiers, fake_redis):
    memory, redis_tier = tiers
    cache = ConnectionStatusCache([memory, redis_tier], clock=FakeClock())
    fake_redis.fail = True

    assert await cache.get("u1") is None
    await cache.set("u1", True)
    assert (await cache.get("u1")).connected is True
    await cache.invalidate("u1")
    assert await memory.get("u1") is None


@pytest.mark.asyncio
async def test_invalidate_clears_every_tier(tiers, fake_redis):
    cache = ConnectionStatusCache(list(tiers), clock=FakeClock())
    await cache.set("u1", True)

    await cache.invalidate("u1")

    assert await cache.get("u1") is None
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_redis_tier_reads_bytes():
    redis_client = FakeRedis()
    tier = RedisStatusTier(redis_client, 60)
    redis_client.store[f"{RedisStatusTier.KEY_PREFIX}u1"] = b'{"connected": false, "checked_at": 5}'

    assert await tier.get("u1") == StatusEntry(connected=False, checked_at=5.0)

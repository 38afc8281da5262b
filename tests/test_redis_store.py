"""Tests for connection handling of the Redis store."""
import pytest

from dotabot.errors import StoreUnavailable
from dotabot.redis_store import RedisStore


@pytest.mark.asyncio
async def test_connect_gives_up_after_bounded_attempts(fake_redis, clock) -> None:
    fake_redis.fail = True
    store = RedisStore("redis://fake", client=fake_redis, connect_attempts=3, clock=clock)

    assert await store.connect() is False
    assert fake_redis.pings == 3
    assert store.status() == {"connected": False, "client": True}


@pytest.mark.asyncio
async def test_degraded_store_rechecks_once_per_interval(fake_redis, clock) -> None:
    fake_redis.fail = True
    store = RedisStore("redis://fake", client=fake_redis, connect_attempts=1, recheck_interval=60, clock=clock)
    await store.connect()

    with pytest.raises(StoreUnavailable):
        await store.get("k")
    assert fake_redis.pings == 1

    fake_redis.fail = False
    with pytest.raises(StoreUnavailable):
        await store.get("k")
    assert fake_redis.pings == 1

    clock.advance(60)
    assert await store.get("k") is None
    assert store.connected


@pytest.mark.asyncio
async def test_command_failure_switches_to_degraded_mode(store, fake_redis) -> None:
    await store.set("k", "v")
    assert store.connected

    fake_redis.fail = True
    with pytest.raises(StoreUnavailable):
        await store.get("k")
    assert not store.connected


@pytest.mark.asyncio
async def test_set_without_ttl_never_expires(store) -> None:
    await store.set("guild_settings:1", "{}", 0)
    assert await store.ttl("guild_settings:1") == -1

    await store.set("profile:1", "{}", 3600)
    assert await store.ttl("profile:1") == 3600


@pytest.mark.asyncio
async def test_incr_with_ttl_rearms_a_lost_expiry(store, fake_redis) -> None:
    fake_redis.data["rl:stratz:global"] = "5"

    result = await store.incr_with_ttl("rl:stratz:global", 60)

    assert result.count == 6
    assert result.ttl == 60
    assert await store.ttl("rl:stratz:global") == 60


@pytest.mark.asyncio
async def test_keys_uses_scan_pattern(store) -> None:
    for key in ("history:1:20", "history:1:50", "history:2:20", "profile:1"):
        await store.set(key, "x")

    assert sorted(await store.keys("history:1:*")) == ["history:1:20", "history:1:50"]


@pytest.mark.asyncio
async def test_close_closes_the_client(store, fake_redis) -> None:
    await store.set("k", "v")
    await store.close()

    assert fake_redis.closed
    assert not store.connected


@pytest.mark.asyncio
async def test_connect_retries_until_redis_answers(fake_redis, clock) -> None:
    fake_redis.failing_pings = 2
    store = RedisStore("redis://fake", client=fake_redis, connect_attempts=3, clock=clock)

    assert await store.connect() is True
    assert fake_redis.pings == 3
    assert store.connected

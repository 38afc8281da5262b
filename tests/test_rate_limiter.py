"""Tests for the Redis fixed-window rate limiter."""
import pytest

from dotabot.config import RateBudget
from dotabot.errors import RateLimitExceeded


@pytest.mark.asyncio
async def test_allows_up_to_the_limit_then_denies(limiter) -> None:
    results = [await limiter.check_limit("rl:stratz:global", 3, 60) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[0].retry_after == 0
    assert 1 <= results[3].retry_after <= 60
    assert all(r.backing_store_reachable for r in results)


@pytest.mark.asyncio
async def test_window_resets_after_expiry(limiter, clock) -> None:
    for _ in range(3):
        await limiter.check_limit("rl:opendota:global", 2, 60)
    denied = await limiter.check_limit("rl:opendota:global", 2, 60)
    assert not denied.allowed

    clock.advance(60)
    fresh = await limiter.check_limit("rl:opendota:global", 2, 60)
    assert fresh.allowed
    assert fresh.remaining == 1


@pytest.mark.asyncio
async def test_counters_are_independent_per_resource(limiter) -> None:
    await limiter.check_limit("rl:a", 1, 60)
    assert not (await limiter.check_limit("rl:a", 1, 60)).allowed
    assert (await limiter.check_limit("rl:b", 1, 60)).allowed


@pytest.mark.asyncio
async def test_fails_open_when_store_is_down(limiter, fake_redis) -> None:
    fake_redis.fail = True
    result = await limiter.check_limit("rl:stratz:global", 1, 60)

    assert result.allowed
    assert not result.backing_store_reachable
    assert result.remaining == 1


@pytest.mark.asyncio
async def test_enforce_raises_when_budget_is_spent(limiter) -> None:
    budget = RateBudget(key="rl:stratz:global", limit=1, window_seconds=60)
    await limiter.enforce(budget, context="test")

    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.enforce(budget, context="test")
    assert exc_info.value.retry_after >= 1

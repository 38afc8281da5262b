"""
rate_limiter.py — Fixed-window call budget per upstream resource, kept in Redis.

Every check INCRs the resource counter; the first increment of a window arms
its expiry, so the window resets when Redis drops the key.  The limiter never
sleeps or queues: a denied caller decides itself whether to fall back or
abort.

If Redis is unreachable the limiter fails open (allowed=True,
backing_store_reachable=False) and logs the degradation; availability of the
bot matters more than strict budgeting while the limiter's own store is down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dotabot.config import RateBudget
from dotabot.errors import RateLimitExceeded, StoreUnavailable
from dotabot.metrics import RATE_LIMIT_DECISIONS
from dotabot.redis_store import RedisStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int
    backing_store_reachable: bool


class RateLimiter:
    def __init__(self, store: RedisStore) -> None:
        self._store = store

    async def check_limit(
        self,
        resource_key: str,
        limit: int,
        window_seconds: int,
        context: str | None = None,
    ) -> RateLimitResult:
        try:
            counter = await self._store.incr_with_ttl(resource_key, window_seconds)
        except StoreUnavailable as exc:
            RATE_LIMIT_DECISIONS.labels(resource=resource_key, decision="fail_open").inc()
            logger.warning(
                "[ratelimit] %s: store unavailable, allowing request (context=%s): %s",
                resource_key, context, exc,
            )
            return RateLimitResult(
                allowed=True,
                remaining=limit,
                retry_after=0,
                backing_store_reachable=False,
            )

        allowed = counter.count <= limit
        remaining = max(limit - counter.count, 0)
        retry_after = 0 if allowed else max(counter.ttl, 1)

        if allowed:
            RATE_LIMIT_DECISIONS.labels(resource=resource_key, decision="allowed").inc()
        else:
            RATE_LIMIT_DECISIONS.labels(resource=resource_key, decision="denied").inc()
            logger.warning(
                "[ratelimit] %s exceeded: %d/%d in %ds window, retry after %ds (context=%s)",
                resource_key, counter.count, limit, window_seconds, retry_after, context,
            )

        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            retry_after=retry_after,
            backing_store_reachable=True,
        )

    async def check_budget(self, budget: RateBudget, context: str | None = None) -> RateLimitResult:
        return await self.check_limit(budget.key, budget.limit, budget.window_seconds, context)

    async def enforce(self, budget: RateBudget, context: str | None = None) -> RateLimitResult:
        """Like check_budget(), but raises RateLimitExceeded on denial."""
        result = await self.check_budget(budget, context)
        if not result.allowed:
            raise RateLimitExceeded(context or budget.key, result.retry_after)
        return result

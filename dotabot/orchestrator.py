"""
orchestrator.py — Cache-first, quota-aware fetch with primary → secondary fallback.

Per logical request:

    1. cache hit                    → return it (no limiter, no key, no network)
    2. primary disabled (no keys)   → secondary
    3. primary budget denied        → secondary (no waiting)
    4. no primary key available     → secondary
    5. primary call
         ok                         → cache + return
         QuotaExceeded              → cool the key down, secondary
         NotFound / TransientError  → secondary
    6. secondary budget is checked for observability only, the call is made
       anyway; its result is cached under the same key, its error propagates.

At most one attempt per provider, so worst-case latency is two upstream
round trips, each bounded by provider_deadline_seconds.  Concurrent misses
for the same cache key share one in-flight task; the task is shielded, so a
caller that gives up does not cancel it and its result still lands in cache.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from dotabot.cache import KIND_HISTORY, KIND_LAST_MATCH, KIND_PROFILE, ResponseCache, cache_key
from dotabot.config import Settings
from dotabot.errors import DataFetchError, NotFound, QuotaExceeded, TransientError
from dotabot.key_pool import KeyPool
from dotabot.metrics import API_LATENCY, API_REQUESTS, FALLBACKS, INFLIGHT
from dotabot.models import HistoryList, NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile
from dotabot.provider_interface import ProviderAdapter
from dotabot.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProviderCall = Callable[[ProviderAdapter, Optional[str]], Awaitable[Any]]

MAX_HISTORY_LIMIT = 100


def _validate_subject(subject_id: str | int) -> str:
    subject = str(subject_id).strip()
    if not subject.isdigit():
        raise ValueError(f"subject id must be a numeric Steam account id, got {subject_id!r}")
    return subject


def _to_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    return value


class ResilienceOrchestrator:
    def __init__(
        self,
        cache: ResponseCache,
        rate_limiter: RateLimiter,
        key_pool: KeyPool,
        primary: ProviderAdapter,
        secondary: ProviderAdapter,
        settings: Settings | None = None,
    ) -> None:
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._key_pool = key_pool
        self._primary = primary
        self._secondary = secondary
        self._settings = settings or Settings()
        self._primary_budget = self._settings.stratz_rate
        self._secondary_budget = self._settings.opendota_rate
        self._inflight: dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Consumer contract
    # ------------------------------------------------------------------

    async def get_last_match(self, subject_id: str | int) -> NormalizedMatchRecord:
        subject = _validate_subject(subject_id)
        return await self._fetch(
            operation="last_match",
            key=cache_key(KIND_LAST_MATCH, subject),
            ttl=self._settings.ttl.match,
            call=lambda provider, api_key: provider.fetch_last_match(subject, api_key),
            load=NormalizedMatchRecord.model_validate,
        )

    async def get_profile(self, subject_id: str | int) -> NormalizedProfile:
        subject = _validate_subject(subject_id)
        return await self._fetch(
            operation="profile",
            key=cache_key(KIND_PROFILE, subject),
            ttl=self._settings.ttl.profile,
            call=lambda provider, api_key: provider.fetch_profile(subject, api_key),
            load=NormalizedProfile.model_validate,
        )

    async def get_history(self, subject_id: str | int, limit: int = 20) -> list[NormalizedHistoryEntry]:
        subject = _validate_subject(subject_id)
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}, got {limit}")
        return await self._fetch(
            operation="history",
            key=cache_key(KIND_HISTORY, subject, limit),
            ttl=self._settings.ttl.history,
            call=lambda provider, api_key: provider.fetch_history(subject, limit, api_key),
            load=HistoryList.validate_python,
        )

    async def invalidate(self, subject_id: str | int) -> None:
        """Drops every cached entry for the subject, history for all limits included."""
        subject = _validate_subject(subject_id)
        await self._cache.delete(cache_key(KIND_LAST_MATCH, subject))
        await self._cache.delete(cache_key(KIND_PROFILE, subject))
        removed = await self._cache.delete_pattern(cache_key(KIND_HISTORY, subject, "*"))
        logger.info("[fetch] cache invalidated for %s (%d history entries)", subject, removed)

    # ------------------------------------------------------------------
    # Cache + de-duplication
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        operation: str,
        key: str,
        ttl: int,
        call: ProviderCall,
        load: Callable[[Any], T],
    ) -> T:
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                result = load(cached)
            except ValidationError as exc:
                logger.warning("[fetch] cached %s has an outdated shape, refetching: %s", key, exc)
            else:
                logger.info("[fetch] cache hit %s", key)
                return result

        task = self._inflight.get(key)
        if task is None:
            checked = functools.partial(self._checked_call, call, load)
            task = asyncio.ensure_future(self._resolve(operation, key, ttl, checked))
            self._inflight[key] = task
            INFLIGHT.inc()
            task.add_done_callback(functools.partial(self._settle, key))
        else:
            logger.debug("[fetch] joining in-flight request for %s", key)

        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Future) -> None:
        INFLIGHT.dec()
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # every awaiter already received the outcome through shield(); this only
        # marks it retrieved when all of them were cancelled
        if not task.cancelled():
            task.exception()

    @staticmethod
    async def _checked_call(call: ProviderCall, load: Callable[[Any], T], provider: ProviderAdapter,
                            api_key: Optional[str]) -> T:
        """Re-validates the adapter result so only the normalized shape is cached."""
        return load(_to_json(await call(provider, api_key)))

    async def _resolve(self, operation: str, key: str, ttl: int, call: ProviderCall) -> Any:
        result = await self._cascade(operation, call)
        await self._cache.set(key, _to_json(result), ttl)
        return result

    # ------------------------------------------------------------------
    # Provider cascade
    # ------------------------------------------------------------------

    async def _cascade(self, operation: str, call: ProviderCall) -> Any:
        primary = self._primary
        reason = await self._primary_skip_reason(operation)

        if reason is None:
            api_key = self._key_pool.next(primary.name)
            if api_key is None and primary.requires_key:
                reason = "no_key"
            else:
                try:
                    return await self._call_provider(primary, operation, call, api_key)
                except QuotaExceeded:
                    self._key_pool.cooldown(primary.name, api_key, self._settings.key_cooldown_seconds)
                    reason = "quota"
                except NotFound:
                    # the secondary has an independent data pipeline, so it is still asked
                    reason = "not_found"
                except TransientError:
                    reason = "transient"

        FALLBACKS.labels(operation=operation, reason=reason).inc()
        logger.warning(
            "[fetch] %s: falling back from %s to %s (%s)",
            operation, primary.name, self._secondary.name, reason,
        )
        return await self._call_secondary(operation, call)

    async def _primary_skip_reason(self, operation: str) -> str | None:
        if self._primary.requires_key and not self._key_pool.is_enabled(self._primary.name):
            return "disabled"
        rate = await self._rate_limiter.check_budget(self._primary_budget, context=f"{operation}.primary")
        if not rate.allowed:
            return "rate_limited"
        return None

    async def _call_secondary(self, operation: str, call: ProviderCall) -> Any:
        secondary = self._secondary
        rate = await self._rate_limiter.check_budget(self._secondary_budget, context=f"{operation}.fallback")
        if not rate.allowed:
            logger.warning(
                "[fetch] %s budget exhausted, calling it anyway as the last resort (retry_after=%ds)",
                secondary.name, rate.retry_after,
            )

        # None when no key is usable: a keyless provider is still called unauthenticated
        api_key = self._key_pool.next(secondary.name)
        if api_key is None and secondary.requires_key:
            raise QuotaExceeded(f"no usable {secondary.name} key", provider=secondary.name)
        try:
            return await self._call_provider(secondary, operation, call, api_key)
        except QuotaExceeded:
            if api_key:
                self._key_pool.cooldown(secondary.name, api_key, self._settings.key_cooldown_seconds)
            raise

    async def _call_provider(
        self,
        provider: ProviderAdapter,
        operation: str,
        call: ProviderCall,
        api_key: str | None,
    ) -> Any:
        deadline = self._settings.provider_deadline_seconds
        started = time.perf_counter()
        outcome = "transient"
        try:
            result = await asyncio.wait_for(call(provider, api_key), timeout=deadline)
        except asyncio.TimeoutError as exc:
            logger.error("[fetch] %s %s exceeded the %.1fs deadline", provider.name, operation, deadline)
            raise TransientError(
                f"{provider.name} {operation} timed out after {deadline}s", provider=provider.name
            ) from exc
        except ValidationError as exc:
            logger.error("[fetch] %s %s returned data that failed validation: %s", provider.name, operation, exc)
            raise TransientError(
                f"{provider.name} {operation} returned malformed data", provider=provider.name
            ) from exc
        except QuotaExceeded:
            outcome = "quota"
            raise
        except NotFound:
            outcome = "not_found"
            raise
        except DataFetchError as exc:
            logger.error("[fetch] %s %s failed: %s", provider.name, operation, exc)
            raise
        except Exception as exc:
            logger.exception("[fetch] %s %s raised an unexpected error", provider.name, operation)
            raise TransientError(
                f"{provider.name} {operation} failed unexpectedly: {exc}", provider=provider.name
            ) from exc
        else:
            outcome = "success"
            return result
        finally:
            API_REQUESTS.labels(service=provider.name, operation=operation, outcome=outcome).inc()
            API_LATENCY.labels(service=provider.name, operation=operation).observe(
                time.perf_counter() - started
            )

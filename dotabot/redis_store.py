"""
redis_store.py — Thin async wrapper over redis-py used by cache.py and rate_limiter.py.

The store never crashes the process: if Redis cannot be reached after a
bounded number of connect attempts (exponential backoff 50 ms, 100 ms,
200 ms, ...) it stays in degraded mode, every command raises
StoreUnavailable, and the callers fail open.  A single reconnect check PING is
allowed once per `recheck_interval` seconds so the store recovers when Redis
comes back.

Values are plain strings (decode_responses=True); JSON encoding belongs to
cache.py.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlsplit

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dotabot.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_BACKOFF_BASE_SECONDS = 0.05
_BACKOFF_CAP_SECONDS = 2.0


@dataclass(frozen=True)
class CounterResult:
    count: int
    ttl: int
    connected: bool


def _describe(url: str) -> str:
    """host:port/db without credentials, for log lines."""
    parts = urlsplit(url)
    return f"{parts.hostname or 'localhost'}:{parts.port or 6379}{parts.path or ''}"


class RedisStore:
    def __init__(
        self,
        url: str,
        *,
        client: Any = None,
        connect_attempts: int = 3,
        socket_timeout: float = 2.0,
        recheck_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._client = client if client is not None else aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._connect_attempts = max(1, connect_attempts)
        self._recheck_interval = recheck_interval
        self._clock = clock
        self._connected = False
        self._attempted = False
        self._last_check = 0.0

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """PINGs Redis up to connect_attempts times. Returns the final state."""
        self._attempted = True
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=_BACKOFF_BASE_SECONDS, max=_BACKOFF_CAP_SECONDS),
            retry=retry_if_exception_type((RedisError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            await retrying(self._client.ping)
        except RetryError as exc:
            logger.debug("[redis] last connect error: %s", exc.last_attempt.exception())
        else:
            self._connected = True
            logger.info("[redis] connected to %s", _describe(self._url))
            return True

        self._connected = False
        self._last_check = self._clock()
        logger.warning(
            "[redis] %s unreachable after %d attempts, operating without cache",
            _describe(self._url), self._connect_attempts,
        )
        return False

    async def _recheck(self) -> None:
        self._last_check = self._clock()
        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            logger.debug("[redis] reconnect check failed: %s", exc)
            return
        self._connected = True
        logger.info("[redis] connection to %s restored", _describe(self._url))

    async def _require(self) -> Any:
        if self._connected:
            return self._client
        if not self._attempted:
            await self.connect()
        elif self._clock() - self._last_check >= self._recheck_interval:
            await self._recheck()
        if not self._connected:
            raise StoreUnavailable("redis is not connected")
        return self._client

    def _mark_down(self, command: str, exc: BaseException) -> None:
        if self._connected:
            logger.warning("[redis] %s failed, switching to degraded mode: %s", command, exc)
        self._connected = False
        self._last_check = self._clock()

    async def _call(self, command: str, *args: Any, **kwargs: Any) -> Any:
        client = await self._require()
        try:
            return await getattr(client, command)(*args, **kwargs)
        except (RedisError, OSError) as exc:
            self._mark_down(command, exc)
            raise StoreUnavailable(f"redis {command} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Key-value commands
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await self._call("get", key)

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> None:
        """SETEX when ttl_seconds > 0, plain SET (no expiry) otherwise."""
        if ttl_seconds > 0:
            await self._call("set", key, value, ex=ttl_seconds)
        else:
            await self._call("set", key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._call("delete", *keys)

    async def keys(self, pattern: str) -> list[str]:
        """Incremental SCAN instead of KEYS so a large keyspace never blocks Redis."""
        client = await self._require()
        try:
            return [key async for key in client.scan_iter(match=pattern, count=500)]
        except (RedisError, OSError) as exc:
            self._mark_down("scan", exc)
            raise StoreUnavailable(f"redis scan failed: {exc}") from exc

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", key))

    async def ttl(self, key: str) -> int:
        """Seconds left; -1 when the key has no expiry, -2 when it is missing."""
        return await self._call("ttl", key)

    async def incr_with_ttl(self, key: str, window_seconds: int) -> CounterResult:
        """INCR and arm the window expiry on the first increment."""
        count = await self._call("incr", key)
        if count == 1:
            await self._call("expire", key, window_seconds)
            return CounterResult(count=count, ttl=window_seconds, connected=True)

        ttl = await self._call("ttl", key)
        if ttl < 0:
            # EXPIRE was lost after an earlier INCR; re-arm or the window never resets
            await self._call("expire", key, window_seconds)
            ttl = window_seconds
        return CounterResult(count=count, ttl=ttl, connected=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def status(self) -> dict:
        return {"connected": self._connected, "client": self._client is not None}

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            logger.error("[redis] error while disconnecting: %s", exc)
            return
        finally:
            self._connected = False
        logger.info("[redis] disconnected")

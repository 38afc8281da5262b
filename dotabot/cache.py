"""
cache.py — JSON response cache on top of RedisStore.

Logic:
- get:  value present → decoded JSON (cache hit); absent, undecodable or
        store down → None (treated as a miss, never raises).
- set:  JSON-encodes and writes with the kind's TTL (0 = no expiry); store
        down → logged no-op, the caller's success path is never blocked.
- delete / delete_pattern: best effort, used by invalidation.

Keys are `<kind>:<subject>` (history keys add the requested limit), see
cache_key().
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dotabot.errors import StoreUnavailable
from dotabot.metrics import CACHE_OPERATIONS
from dotabot.redis_store import RedisStore

logger = logging.getLogger(__name__)

KIND_LAST_MATCH = "last_match"
KIND_PROFILE = "profile"
KIND_HISTORY = "history"
# written by the bot front end, nothing in this package reads it
KIND_GUILD_SETTINGS = "guild_settings"


def cache_key(kind: str, subject: str, *qualifiers: object) -> str:
    """cache_key("history", "115431346", 20) -> "history:115431346:20"."""
    return ":".join([kind, str(subject), *(str(q) for q in qualifiers)])


class ResponseCache:
    def __init__(self, store: RedisStore) -> None:
        self._store = store

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._store.get(key)
        except StoreUnavailable as exc:
            CACHE_OPERATIONS.labels(operation="get", result="error").inc()
            logger.warning("[cache] GET %s skipped, store unavailable: %s", key, exc)
            return None

        if raw is None:
            CACHE_OPERATIONS.labels(operation="get", result="miss").inc()
            logger.debug("[cache] MISS %s", key)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            CACHE_OPERATIONS.labels(operation="get", result="error").inc()
            logger.warning("[cache] undecodable value under %s, treating as miss: %s", key, exc)
            return None

        CACHE_OPERATIONS.labels(operation="get", result="hit").inc()
        logger.debug("[cache] HIT  %s", key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            CACHE_OPERATIONS.labels(operation="set", result="error").inc()
            logger.error("[cache] value for %s is not JSON serialisable: %s", key, exc)
            return

        try:
            await self._store.set(key, payload, max(0, ttl_seconds))
        except StoreUnavailable as exc:
            CACHE_OPERATIONS.labels(operation="set", result="error").inc()
            logger.warning("[cache] SET %s skipped, store unavailable: %s", key, exc)
            return

        CACHE_OPERATIONS.labels(operation="set", result="ok").inc()
        logger.debug("[cache] stored %s (ttl=%ss)", key, ttl_seconds)

    async def delete(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except StoreUnavailable as exc:
            logger.warning("[cache] DEL %s skipped, store unavailable: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> int:
        """Deletes every key matching a glob pattern. Returns how many were removed."""
        try:
            keys = await self._store.keys(pattern)
            if not keys:
                return 0
            removed = await self._store.delete(*keys)
        except StoreUnavailable as exc:
            logger.warning("[cache] DEL pattern %s skipped, store unavailable: %s", pattern, exc)
            return 0

        logger.info("[cache] deleted %d keys matching %r", removed, pattern)
        return removed

    async def exists(self, key: str) -> bool:
        try:
            return await self._store.exists(key)
        except StoreUnavailable:
            return False

    async def ttl(self, key: str) -> int:
        """Remaining TTL; -1 no expiry, -2 missing (also when the store is down)."""
        try:
            return await self._store.ttl(key)
        except StoreUnavailable:
            return -2

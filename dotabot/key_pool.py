"""
key_pool.py — Round-robin API key rotation with per-key cooldown.

One ordered pool per upstream service, built once at startup from Settings
and never persisted.  next() walks at most len(pool) keys from the cursor,
skips keys whose cooldown has not elapsed and advances the cursor past the
key it returns.  cooldown() overwrites (never stacks) a key's deadline.

Deadlines use a monotonic clock.  All methods are synchronous, which keeps
cursor and cooldown updates atomic under the single asyncio event loop; a
threaded caller would need a lock around them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from dotabot.config import DEFAULT_KEY_COOLDOWN_SECONDS
from dotabot.metrics import KEY_COOLDOWNS

logger = logging.getLogger(__name__)

STRATZ = "stratz"
OPENDOTA = "opendota"


def key_suffix(key: str) -> str:
    """Last 6 characters: enough to tell keys apart in logs without leaking them."""
    return f"...{key[-6:]}"


@dataclass
class _Pool:
    keys: list[str]
    cooldown_until: dict[str, float] = field(default_factory=dict)
    cursor: int = 0


class KeyPool:
    def __init__(
        self,
        keys_by_service: Mapping[str, Sequence[str]] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._pools: dict[str, _Pool] = {}
        for service, keys in (keys_by_service or {}).items():
            self.add_service(service, keys)

    def add_service(self, service: str, keys: Sequence[str]) -> None:
        # dict.fromkeys: de-duplicate while preserving configured order
        self._pools[service] = _Pool(keys=list(dict.fromkeys(k for k in keys if k)))
        logger.info("[keys] %s pool loaded with %d key(s)", service, len(self._pools[service].keys))

    def is_enabled(self, service: str) -> bool:
        pool = self._pools.get(service)
        return bool(pool and pool.keys)

    def size(self, service: str) -> int:
        pool = self._pools.get(service)
        return len(pool.keys) if pool else 0

    def next(self, service: str) -> str | None:
        """Next usable key in round-robin order, or None when all are cooling down."""
        pool = self._pools.get(service)
        if not pool or not pool.keys:
            return None

        now = self._clock()
        total = len(pool.keys)
        for offset in range(total):
            idx = (pool.cursor + offset) % total
            key = pool.keys[idx]
            if pool.cooldown_until.get(key, 0.0) > now:
                continue
            pool.cursor = (idx + 1) % total
            return key

        logger.debug("[keys] no %s key available, all %d cooling down", service, total)
        return None

    def cooldown(
        self,
        service: str,
        key: str | None,
        duration: float = DEFAULT_KEY_COOLDOWN_SECONDS,
    ) -> None:
        """Suspends `key` for `duration` seconds (an active cooldown is overwritten)."""
        if not key:
            return
        pool = self._pools.get(service)
        if pool is None or key not in pool.keys:
            logger.warning("[keys] cooldown requested for unknown %s key %s", service, key_suffix(key))
            return

        pool.cooldown_until[key] = self._clock() + duration
        KEY_COOLDOWNS.labels(service=service).inc()
        logger.warning(
            "[keys] %s key %s put on cooldown for %.0fs",
            service, key_suffix(key), duration,
        )

    def cooldown_remaining(self, service: str, key: str) -> float:
        pool = self._pools.get(service)
        if pool is None:
            return 0.0
        return max(0.0, pool.cooldown_until.get(key, 0.0) - self._clock())

    def available_count(self, service: str) -> int:
        pool = self._pools.get(service)
        if pool is None:
            return 0
        now = self._clock()
        return sum(1 for key in pool.keys if pool.cooldown_until.get(key, 0.0) <= now)

    def snapshot(self) -> dict[str, dict[str, int]]:
        """{service: {"keys": n, "available": m}} for /health."""
        return {
            service: {"keys": self.size(service), "available": self.available_count(service)}
            for service in self._pools
        }

"""
services.py — Builds the data layer from Settings.

Components are constructor-injected everywhere else; this module is the only
place that holds process-wide instances, for the entry points (api.py,
cli.py).  Tests build their own DataServices with fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dotabot.cache import ResponseCache
from dotabot.config import Settings
from dotabot.key_pool import OPENDOTA, STRATZ, KeyPool
from dotabot.opendota_client import OpenDotaClient
from dotabot.orchestrator import ResilienceOrchestrator
from dotabot.rate_limiter import RateLimiter
from dotabot.redis_store import RedisStore
from dotabot.stratz_client import StratzClient

logger = logging.getLogger(__name__)


@dataclass
class DataServices:
    settings: Settings
    store: RedisStore
    key_pool: KeyPool
    orchestrator: ResilienceOrchestrator

    def health(self) -> dict:
        return {
            "redis": self.store.status(),
            "providers": self.key_pool.snapshot(),
        }

    async def aclose(self) -> None:
        await self.store.close()


def build_services(settings: Settings, store: RedisStore | None = None) -> DataServices:
    store = store or RedisStore(
        settings.redis_url,
        connect_attempts=settings.redis_connect_attempts,
        socket_timeout=settings.redis_socket_timeout,
    )
    key_pool = KeyPool({STRATZ: settings.stratz_tokens, OPENDOTA: settings.opendota_keys})
    if not key_pool.is_enabled(STRATZ):
        logger.warning("[services] no STRATZ_API_TOKEN configured, every request goes to OpenDota")

    orchestrator = ResilienceOrchestrator(
        cache=ResponseCache(store),
        rate_limiter=RateLimiter(store),
        key_pool=key_pool,
        primary=StratzClient(settings.stratz_url),
        secondary=OpenDotaClient(settings.opendota_url, hero_names_ttl_hours=settings.hero_names_ttl_hours),
        settings=settings,
    )
    return DataServices(settings=settings, store=store, key_pool=key_pool, orchestrator=orchestrator)


async def start_services(settings: Settings | None = None) -> DataServices:
    """build_services() + eager Redis connect, so a dead Redis is reported at startup."""
    services = build_services(settings or Settings.from_env())
    await services.store.connect()
    return services

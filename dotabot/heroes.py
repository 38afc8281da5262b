import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


def fallback_hero_name(hero_id: int) -> str:
    return f"Hero {hero_id}"


class HeroDirectory:
    """hero_id -> localized name, loaded from OpenDota /heroes with an in-memory TTL.

    - Directory fresh → names served from memory.
    - Stale / empty → reloaded (one reload at a time, concurrent callers wait).
    - Reload failed but an old directory exists → old names kept (stale).
    - Reload failed and nothing loaded yet → "Hero <id>" placeholders.
    - After a failed reload no new attempt is made for `failure_backoff` seconds.
    """

    def __init__(
        self,
        fetch_heroes: Callable[[], Awaitable[list[dict]]],
        ttl_hours: int = 6,
        failure_backoff: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_heroes = fetch_heroes
        self._ttl_seconds = ttl_hours * 3600
        self._clock = clock
        self._names: dict[int, str] = {}
        self._loaded_at: float | None = None
        self._failure_backoff = failure_backoff
        self._failed_at: float | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self._ttl_seconds

    def _should_reload(self) -> bool:
        if self._is_fresh():
            return False
        if self._failed_at is not None and (self._clock() - self._failed_at) < self._failure_backoff:
            return False
        return True

    async def _refresh(self) -> None:
        raw = await self._fetch_heroes()
        names: dict[int, str] = {}
        for hero in raw:
            hero_id = hero.get("id")
            if not hero_id:
                continue
            names[hero_id] = hero.get("localized_name") or hero.get("name") or fallback_hero_name(hero_id)
        self._names = names
        self._loaded_at = self._clock()
        self._failed_at = None
        logger.info("[heroes] directory refreshed: %d heroes", len(names))

    async def ensure_loaded(self) -> None:
        if not self._should_reload():
            return
        async with self._lock:
            if not self._should_reload():
                return
            try:
                await self._refresh()
            except Exception as exc:
                self._failed_at = self._clock()
                if self._names:
                    logger.warning(
                        "[heroes] refresh failed (%s), keeping stale directory (%d heroes)",
                        exc, len(self._names),
                    )
                else:
                    logger.error("[heroes] refresh failed and directory is empty: %s", exc)

    def name(self, hero_id: int) -> str:
        return self._names.get(hero_id) or fallback_hero_name(hero_id)

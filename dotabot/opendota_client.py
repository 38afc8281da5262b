"""
opendota_client.py — Secondary provider: OpenDota REST API.

Plain GET endpoints, no authentication required.  When an OpenDota key is
configured it is sent as the `api_key` query parameter (paid tier limits).
Schema is simpler than Stratz: no net worth or items on recent matches, and
the player's side comes from player_slot, so both are filled with defaults /
derived through match_utils exactly like the primary adapter does.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from dotabot.config import OPENDOTA_API_URL
from dotabot.errors import NotFound, QuotaExceeded, TransientError
from dotabot.heroes import HeroDirectory
from dotabot.match_utils import did_win, is_radiant_slot, win_rate
from dotabot.models import NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile, TopHero

logger = logging.getLogger(__name__)

PROVIDER = "opendota"

# Columns requested from /players/{id}/matches so history rows carry GPM/XPM
HISTORY_PROJECTION = (
    "match_id", "player_slot", "radiant_win", "hero_id", "kills", "deaths",
    "assists", "gold_per_min", "xp_per_min", "duration", "start_time",
)

TOP_HEROES = 5


def _build_params(api_key: str | None, extra: dict | None = None) -> dict:
    """Adds api_key to the query parameters when a key is available."""
    params = dict(extra or {})
    if api_key:
        params["api_key"] = api_key
    return params


# ---------------------------------------------------------------------------
# Normalization (pure functions, exercised directly by tests)
# ---------------------------------------------------------------------------

def parse_recent_match(raw: dict, hero_name: Callable[[int], str]) -> NormalizedMatchRecord:
    try:
        if raw.get("radiant_win") is None:
            raise TransientError(f"OpenDota match {raw.get('match_id')} has no radiant_win", provider=PROVIDER)
        is_radiant = is_radiant_slot(int(raw["player_slot"]))
        hero_id = int(raw.get("hero_id") or 0)
        return NormalizedMatchRecord(
            match_id=int(raw["match_id"]),
            hero_id=hero_id,
            hero_name=hero_name(hero_id),
            is_radiant=is_radiant,
            won=did_win(is_radiant, bool(raw["radiant_win"])),
            kills=raw.get("kills") or 0,
            deaths=raw.get("deaths") or 0,
            assists=raw.get("assists") or 0,
            gold_per_min=raw.get("gold_per_min") or 0,
            xp_per_min=raw.get("xp_per_min") or 0,
            duration=raw.get("duration") or 0,
            start_time=raw.get("start_time") or 0,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransientError(f"Malformed OpenDota match payload: {exc}", provider=PROVIDER) from exc


def parse_history(raw_matches: list[dict], hero_name: Callable[[int], str]) -> list[NormalizedHistoryEntry]:
    """OpenDota lists newest first; entries are returned oldest-first."""
    entries = []
    for raw in raw_matches:
        record = parse_recent_match(raw, hero_name)
        entries.append(NormalizedHistoryEntry(
            match_id=record.match_id,
            won=record.won,
            hero_id=record.hero_id,
            hero_name=record.hero_name,
            kills=record.kills,
            deaths=record.deaths,
            assists=record.assists,
            gold_per_min=record.gold_per_min,
            xp_per_min=record.xp_per_min,
            duration=record.duration,
        ))
    entries.reverse()
    return entries


def parse_profile(
    profile: dict,
    wl: dict,
    heroes: list[dict],
    hero_name: Callable[[int], str],
) -> NormalizedProfile:
    account = profile.get("profile") if isinstance(profile, dict) else None
    if not account:
        raise NotFound("OpenDota has no such player", provider=PROVIDER)

    try:
        wins = wl.get("win") or 0
        losses = wl.get("lose") or 0
        total = wins + losses

        ranked = sorted(
            (h for h in heroes if isinstance(h, dict)),
            key=lambda h: h.get("games") or 0,
            reverse=True,
        )[:TOP_HEROES]

        top_heroes = []
        for h in ranked:
            hero_id = int(h.get("hero_id") or 0)
            games = h.get("games") or 0
            hero_wins = h.get("win") or 0
            top_heroes.append(TopHero(
                hero_id=hero_id,
                name=hero_name(hero_id),
                matches=games,
                wins=hero_wins,
                win_rate=win_rate(hero_wins, games),
            ))

        return NormalizedProfile(
            name=account.get("personaname") or "Unknown",
            avatar=account.get("avatarfull") or "",
            wins=wins,
            losses=losses,
            total_matches=total,
            win_rate=win_rate(wins, total),
            rank_tier=profile.get("rank_tier") or None,
            top_heroes=top_heroes,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransientError(f"Malformed OpenDota profile payload: {exc}", provider=PROVIDER) from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OpenDotaClient:
    name = PROVIDER
    requires_key = False

    def __init__(
        self,
        base_url: str = OPENDOTA_API_URL,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        hero_names_ttl_hours: int = 6,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self.heroes = HeroDirectory(self.get_heroes, ttl_hours=hero_names_ttl_hours)

    async def _get(
        self,
        client: httpx.AsyncClient,
        path: str,
        api_key: str | None,
        params: dict | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = await client.get(url, params=_build_params(api_key, params), timeout=self._timeout)
        except httpx.RequestError as e:
            logger.error("[opendota] network error (%s): %s", path, e)
            raise TransientError(f"OpenDota network error: {e}", provider=PROVIDER) from e

        if r.status_code == 429:
            logger.warning("[opendota] %s returned HTTP 429", path)
            raise QuotaExceeded("OpenDota API returned HTTP 429", provider=PROVIDER, status_code=429)
        if r.status_code in (401, 403) and api_key:
            logger.warning("[opendota] %s returned HTTP %s, api key rejected", path, r.status_code)
            raise QuotaExceeded(
                f"OpenDota API returned HTTP {r.status_code}",
                provider=PROVIDER, status_code=r.status_code,
            )
        if r.status_code == 404:
            raise NotFound(f"OpenDota {path} returned HTTP 404", provider=PROVIDER, status_code=404)
        if r.status_code != 200:
            logger.error("[opendota] %s returned HTTP %s: %s", path, r.status_code, r.text[:200])
            raise TransientError(
                f"OpenDota API returned HTTP {r.status_code}",
                provider=PROVIDER, status_code=r.status_code,
            )

        try:
            body = r.json()
        except ValueError as e:
            raise TransientError(f"OpenDota returned a non-JSON body: {e}", provider=PROVIDER) from e

        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
            if "limit" in message.lower():
                raise QuotaExceeded(f"OpenDota error: {message}", provider=PROVIDER)
            raise TransientError(f"OpenDota error: {message}", provider=PROVIDER)
        return body

    async def get_heroes(self) -> list[dict]:
        """GET /heroes: id, localized_name, primary_attr, ... for every hero."""
        async with httpx.AsyncClient(transport=self._transport) as client:
            body = await self._get(client, "/heroes", None)
        if not isinstance(body, list):
            raise TransientError("OpenDota /heroes did not return a list", provider=PROVIDER)
        return body

    async def fetch_last_match(self, subject_id: str, api_key: str | None = None) -> NormalizedMatchRecord:
        await self.heroes.ensure_loaded()
        async with httpx.AsyncClient(transport=self._transport) as client:
            body = await self._get(client, f"/players/{subject_id}/recentMatches", api_key)
        if not isinstance(body, list) or not body:
            raise NotFound("OpenDota returned no recent matches", provider=PROVIDER)
        return parse_recent_match(body[0], self.heroes.name)

    async def fetch_profile(self, subject_id: str, api_key: str | None = None) -> NormalizedProfile:
        await self.heroes.ensure_loaded()
        async with httpx.AsyncClient(transport=self._transport) as client:
            profile, wl, heroes = await asyncio.gather(
                self._get(client, f"/players/{subject_id}", api_key),
                self._get(client, f"/players/{subject_id}/wl", api_key),
                self._get(client, f"/players/{subject_id}/heroes", api_key),
            )
        return parse_profile(
            profile,
            wl if isinstance(wl, dict) else {},
            heroes if isinstance(heroes, list) else [],
            self.heroes.name,
        )

    async def fetch_history(
        self, subject_id: str, limit: int, api_key: str | None = None
    ) -> list[NormalizedHistoryEntry]:
        await self.heroes.ensure_loaded()
        params = {"limit": limit, "project": list(HISTORY_PROJECTION)}
        async with httpx.AsyncClient(transport=self._transport) as client:
            body = await self._get(client, f"/players/{subject_id}/matches", api_key, params)
        if not isinstance(body, list) or not body:
            raise NotFound("OpenDota returned an empty match history", provider=PROVIDER)
        return parse_history(body[:limit], self.heroes.name)

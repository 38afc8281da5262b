"""
stratz_client.py — Primary provider: Stratz GraphQL API (bearer token, quota limited).

Single POST endpoint carrying {query, variables}.  Failures are mapped to
typed errors here because only this module knows Stratz's error shapes:

    429, 401/403            → QuotaExceeded (the orchestrator cools the token down)
    404, player/match empty → NotFound
    network, 5xx, bad JSON  → TransientError
    2xx with "errors"       → QuotaExceeded if the message talks about limits,
                              otherwise TransientError
"""

from __future__ import annotations

import logging

import httpx

from dotabot.config import STRATZ_API_URL
from dotabot.errors import NotFound, QuotaExceeded, TransientError
from dotabot.match_utils import did_win, is_radiant_slot, win_rate
from dotabot.models import NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile, TopHero

logger = logging.getLogger(__name__)

PROVIDER = "stratz"

_QUOTA_MARKERS = ("rate limit", "ratelimit", "quota", "too many", "limit exceeded")

_PLAYER_FIELDS = """
        isRadiant
        playerSlot
        hero {
          id
          displayName
        }
        kills
        deaths
        assists
        goldPerMinute
        experiencePerMinute
"""

LAST_MATCH_QUERY = """
query GetLastMatch($steamAccountId: Long!) {
  player(steamAccountId: $steamAccountId) {
    matches(request: { take: 1 }) {
      id
      didRadiantWin
      durationSeconds
      startDateTime
      players(steamAccountId: $steamAccountId) {%s
        networth
        item0Id
        item1Id
        item2Id
        item3Id
        item4Id
        item5Id
      }
    }
  }
}
""" % _PLAYER_FIELDS

PROFILE_QUERY = """
query GetPlayerProfile($steamAccountId: Long!) {
  player(steamAccountId: $steamAccountId) {
    steamAccount {
      id
      name
      avatar
      seasonRank
    }
    winCount
    matchCount
    heroesPerformance(request: { take: 5 }) {
      hero {
        id
        displayName
      }
      matchCount
      winCount
    }
  }
}
"""

HISTORY_QUERY = """
query GetMatchHistory($steamAccountId: Long!, $take: Int!) {
  player(steamAccountId: $steamAccountId) {
    matches(request: { take: $take }) {
      id
      didRadiantWin
      durationSeconds
      players(steamAccountId: $steamAccountId) {%s
      }
    }
  }
}
""" % _PLAYER_FIELDS

# Stratz sits behind Cloudflare. Without a plausible User-Agent the WAF
# answers 403 with an HTML page instead of a GraphQL error.
_EXTRA_HEADERS = {
    "User-Agent": "STRATZ_API",
    "Accept": "application/json",
}


def get_stratz_headers(token: str) -> dict:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        **_EXTRA_HEADERS,
    }


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


# ---------------------------------------------------------------------------
# Normalization (pure functions, exercised directly by tests)
# ---------------------------------------------------------------------------

def _player_side(player: dict) -> bool:
    """True for Radiant. Prefers Stratz's isRadiant, falls back to the slot bit."""
    if player.get("isRadiant") is not None:
        return bool(player["isRadiant"])
    if player.get("playerSlot") is not None:
        return is_radiant_slot(int(player["playerSlot"]))
    raise TransientError("Stratz player entry has neither isRadiant nor playerSlot", provider=PROVIDER)


def _radiant_win(match: dict) -> bool:
    if match.get("didRadiantWin") is None:
        raise TransientError(f"Stratz match {match.get('id')} has no didRadiantWin", provider=PROVIDER)
    return bool(match["didRadiantWin"])


def _player_matches(data: dict) -> list[dict]:
    player = data.get("player") if isinstance(data, dict) else None
    if not player:
        raise NotFound("Stratz has no such player", provider=PROVIDER)
    return player.get("matches") or []


def _subject_entry(match: dict) -> dict | None:
    players = match.get("players") or []
    return players[0] if players else None


def parse_last_match(data: dict) -> NormalizedMatchRecord:
    matches = _player_matches(data)
    if not matches:
        raise NotFound("Stratz returned no matches for player", provider=PROVIDER)

    try:
        match = matches[0]
        player = _subject_entry(match)
        if player is None:
            raise TransientError("Stratz match has no entry for the player", provider=PROVIDER)
        is_radiant = _player_side(player)
        hero = player.get("hero") or {}
        hero_id = hero.get("id") or 0
        return NormalizedMatchRecord(
            match_id=int(match["id"]),
            hero_id=hero_id,
            hero_name=hero.get("displayName") or f"Hero {hero_id}",
            is_radiant=is_radiant,
            won=did_win(is_radiant, _radiant_win(match)),
            kills=player.get("kills") or 0,
            deaths=player.get("deaths") or 0,
            assists=player.get("assists") or 0,
            gold_per_min=player.get("goldPerMinute") or 0,
            xp_per_min=player.get("experiencePerMinute") or 0,
            net_worth=player.get("networth") or 0,
            duration=match.get("durationSeconds") or 0,
            start_time=match.get("startDateTime") or 0,
            items=[
                player[f"item{slot}Id"]
                for slot in range(6)
                if player.get(f"item{slot}Id") is not None
            ],
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransientError(f"Malformed Stratz match payload: {exc}", provider=PROVIDER) from exc


def parse_profile(data: dict) -> NormalizedProfile:
    player = data.get("player")
    if not player or not player.get("steamAccount"):
        raise NotFound("Stratz has no such player", provider=PROVIDER)

    try:
        account = player["steamAccount"]
        wins = player.get("winCount") or 0
        total = player.get("matchCount") or 0

        top_heroes = []
        for perf in player.get("heroesPerformance") or []:
            hero = perf.get("hero") or {}
            hero_id = hero.get("id") or 0
            matches = perf.get("matchCount") or 0
            hero_wins = perf.get("winCount") or 0
            top_heroes.append(TopHero(
                hero_id=hero_id,
                name=hero.get("displayName") or f"Hero {hero_id}",
                matches=matches,
                wins=hero_wins,
                win_rate=win_rate(hero_wins, matches),
            ))

        return NormalizedProfile(
            name=account.get("name") or "Unknown",
            avatar=account.get("avatar") or "",
            wins=wins,
            losses=max(total - wins, 0),
            total_matches=total,
            win_rate=win_rate(wins, total),
            rank_tier=account.get("seasonRank") or None,
            top_heroes=top_heroes,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransientError(f"Malformed Stratz profile payload: {exc}", provider=PROVIDER) from exc


def parse_history(data: dict) -> list[NormalizedHistoryEntry]:
    """Entries oldest-first; matches without the player's entry are skipped."""
    entries: list[NormalizedHistoryEntry] = []
    try:
        for match in _player_matches(data):
            player = _subject_entry(match)
            if player is None:
                continue
            is_radiant = _player_side(player)
            hero = player.get("hero") or {}
            hero_id = hero.get("id") or 0
            entries.append(NormalizedHistoryEntry(
                match_id=int(match["id"]),
                won=did_win(is_radiant, _radiant_win(match)),
                hero_id=hero_id,
                hero_name=hero.get("displayName") or f"Hero {hero_id}",
                kills=player.get("kills") or 0,
                deaths=player.get("deaths") or 0,
                assists=player.get("assists") or 0,
                gold_per_min=player.get("goldPerMinute") or 0,
                xp_per_min=player.get("experiencePerMinute") or 0,
                duration=match.get("durationSeconds") or 0,
            ))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransientError(f"Malformed Stratz history payload: {exc}", provider=PROVIDER) from exc

    if not entries:
        raise NotFound("Stratz returned an empty match history", provider=PROVIDER)
    entries.reverse()
    return entries


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class StratzClient:
    name = PROVIDER
    requires_key = True

    def __init__(
        self,
        url: str = STRATZ_API_URL,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def execute_query(self, query: str, variables: dict | None, api_key: str | None) -> dict:
        """POSTs a GraphQL query and returns the `data` object."""
        if not api_key:
            raise QuotaExceeded("No Stratz token supplied", provider=PROVIDER)

        payload: dict = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        logger.debug("[stratz] POST %s | variables=%s", self.url, variables)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                r = await client.post(
                    self.url,
                    json=payload,
                    headers=get_stratz_headers(api_key),
                    timeout=self._timeout,
                )
        except httpx.RequestError as e:
            logger.error("[stratz] network error: %s", e)
            raise TransientError(f"Stratz API network error: {e}", provider=PROVIDER) from e

        if r.status_code == 429:
            logger.warning("[stratz] HTTP 429, token quota exhausted")
            raise QuotaExceeded(
                "Stratz API returned HTTP 429",
                provider=PROVIDER, status_code=429, retry_after=_retry_after(r),
            )

        # 403: HTML body → Cloudflare/WAF block, JSON body → token problem.
        # Either way this token is unusable right now.
        if r.status_code in (401, 403):
            is_html = r.text.lstrip()[:9].lower().startswith(("<!doctype", "<html"))
            if is_html:
                logger.warning("[stratz] HTTP %s with HTML body, likely a Cloudflare/WAF block", r.status_code)
            else:
                logger.warning("[stratz] HTTP %s, token invalid, expired or out of quota", r.status_code)
            raise QuotaExceeded(
                f"Stratz API returned HTTP {r.status_code}",
                provider=PROVIDER, status_code=r.status_code,
            )

        if r.status_code == 404:
            raise NotFound("Stratz API returned HTTP 404", provider=PROVIDER, status_code=404)

        if r.status_code >= 400:
            logger.error("[stratz] HTTP %s: %r", r.status_code, r.text[:200])
            raise TransientError(
                f"Stratz API returned HTTP {r.status_code}",
                provider=PROVIDER, status_code=r.status_code,
            )

        try:
            body = r.json()
        except ValueError as e:
            raise TransientError(f"Stratz returned a non-JSON body: {e}", provider=PROVIDER) from e
        if not isinstance(body, dict):
            raise TransientError("Stratz response is not a JSON object", provider=PROVIDER)

        if body.get("errors"):
            errors = body["errors"]
            message = str(errors[0].get("message", errors)) if isinstance(errors, list) else str(errors)
            logger.warning("[stratz] GraphQL errors: %s", errors)
            if any(marker in message.lower() for marker in _QUOTA_MARKERS):
                raise QuotaExceeded(f"Stratz GraphQL error: {message}", provider=PROVIDER)
            raise TransientError(f"Stratz GraphQL error: {message}", provider=PROVIDER)

        data = body.get("data")
        if not isinstance(data, dict):
            raise TransientError("Stratz response has no data object", provider=PROVIDER)
        return data

    async def fetch_last_match(self, subject_id: str, api_key: str | None = None) -> NormalizedMatchRecord:
        data = await self.execute_query(LAST_MATCH_QUERY, {"steamAccountId": int(subject_id)}, api_key)
        return parse_last_match(data)

    async def fetch_profile(self, subject_id: str, api_key: str | None = None) -> NormalizedProfile:
        data = await self.execute_query(PROFILE_QUERY, {"steamAccountId": int(subject_id)}, api_key)
        return parse_profile(data)

    async def fetch_history(
        self, subject_id: str, limit: int, api_key: str | None = None
    ) -> list[NormalizedHistoryEntry]:
        data = await self.execute_query(
            HISTORY_QUERY, {"steamAccountId": int(subject_id), "take": limit}, api_key
        )
        return parse_history(data)

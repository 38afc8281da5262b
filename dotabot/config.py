"""
config.py — Runtime settings and stable constants for the dotabot data layer.

Constants at the top are environment-independent (cache key layout, TTL
defaults, upstream endpoints).  Everything an operator may want to change is
read from environment variables by Settings.from_env(); entry points load
.env first (see api.py / cli.py).
"""

from __future__ import annotations

import os
from typing import Mapping
from urllib.parse import quote

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Upstream endpoints
# ---------------------------------------------------------------------------

STRATZ_API_URL = "https://api.stratz.com/graphql"
OPENDOTA_API_URL = "https://api.opendota.com/api"

# ---------------------------------------------------------------------------
# Cache TTL policy (seconds)
#
#   profile     : 1 hour, profiles change slowly
#   match       : 24 hours, a finished match never changes
#   history     : 30 minutes, new matches may appear
#   guild       : 0 = no expiry, explicit invalidation only (front-end owned,
#                 no reader in this package)
# ---------------------------------------------------------------------------

TTL_PROFILE: int = 3600
TTL_MATCH: int = 86400
TTL_HISTORY: int = 1800
TTL_GUILD_SETTINGS: int = 0

# Numbered credential variables are read as PREFIX_1 .. PREFIX_MAX_KEYS.
MAX_KEYS: int = 10

# Template leftovers from .env.example are never treated as real keys.
_PLACEHOLDER_MARKERS = ("your_", "placeholder")

DEFAULT_KEY_COOLDOWN_SECONDS: float = 600.0  # 10 minutes


class RateBudget(BaseModel):
    """Fixed-window budget for one upstream resource."""

    key: str
    limit: int = Field(gt=0)
    window_seconds: int = Field(gt=0)


class CacheTTLs(BaseModel):
    profile: int = Field(default=TTL_PROFILE, ge=0)
    match: int = Field(default=TTL_MATCH, ge=0)
    history: int = Field(default=TTL_HISTORY, ge=0)
    guild_settings: int = Field(default=TTL_GUILD_SETTINGS, ge=0)


class Settings(BaseModel):
    redis_url: str = "redis://localhost:6379/0"
    redis_connect_attempts: int = Field(default=3, ge=1)
    redis_socket_timeout: float = 2.0

    stratz_url: str = STRATZ_API_URL
    opendota_url: str = OPENDOTA_API_URL
    stratz_tokens: list[str] = Field(default_factory=list)
    opendota_keys: list[str] = Field(default_factory=list)

    stratz_rate: RateBudget = RateBudget(key="rl:stratz:global", limit=90, window_seconds=60)
    opendota_rate: RateBudget = RateBudget(key="rl:opendota:global", limit=50, window_seconds=60)

    ttl: CacheTTLs = Field(default_factory=CacheTTLs)
    key_cooldown_seconds: float = Field(default=DEFAULT_KEY_COOLDOWN_SECONDS, gt=0)
    provider_deadline_seconds: float = Field(default=5.0, gt=0)
    hero_names_ttl_hours: int = Field(default=6, ge=1)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            return int(env.get(name, str(default)))

        return cls(
            redis_url=build_redis_url(env),
            redis_connect_attempts=_int("REDIS_CONNECT_ATTEMPTS", 3),
            stratz_tokens=load_keys("STRATZ_API_TOKEN", env),
            opendota_keys=load_keys("OPEN_DOTA_API_KEY", env, legacy_name="OPENDOTA_API_KEY"),
            stratz_rate=RateBudget(
                key="rl:stratz:global",
                limit=_int("STRATZ_RATE_LIMIT", 90),
                window_seconds=_int("STRATZ_RATE_WINDOW_SECONDS", 60),
            ),
            opendota_rate=RateBudget(
                key="rl:opendota:global",
                limit=_int("OPENDOTA_RATE_LIMIT", 50),
                window_seconds=_int("OPENDOTA_RATE_WINDOW_SECONDS", 60),
            ),
            ttl=CacheTTLs(
                profile=_int("CACHE_TTL_PROFILE", TTL_PROFILE),
                match=_int("CACHE_TTL_MATCH", TTL_MATCH),
                history=_int("CACHE_TTL_HISTORY", TTL_HISTORY),
                guild_settings=_int("CACHE_TTL_GUILD", TTL_GUILD_SETTINGS),
            ),
            key_cooldown_seconds=float(
                env.get("KEY_COOLDOWN_SECONDS", str(DEFAULT_KEY_COOLDOWN_SECONDS))
            ),
            provider_deadline_seconds=float(env.get("PROVIDER_DEADLINE_SECONDS", "5")),
            hero_names_ttl_hours=_int("HERO_NAMES_TTL_HOURS", 6),
        )


def _is_usable_key(value: str | None) -> bool:
    if not value or not value.strip():
        return False
    return not any(marker in value for marker in _PLACEHOLDER_MARKERS)


def load_keys(
    prefix: str,
    environ: Mapping[str, str] | None = None,
    legacy_name: str | None = None,
) -> list[str]:
    """Reads PREFIX_1..PREFIX_10 in order, skipping blanks and placeholders.

    When none of the numbered variables is set, falls back to the single-key
    variable (PREFIX itself, or legacy_name) so older .env files keep working.
    """
    env = os.environ if environ is None else environ
    keys = [
        env[f"{prefix}_{i}"].strip()
        for i in range(1, MAX_KEYS + 1)
        if _is_usable_key(env.get(f"{prefix}_{i}"))
    ]
    if keys:
        return keys

    single = env.get(legacy_name or prefix)
    if _is_usable_key(single):
        return [single.strip()]
    return []


def build_redis_url(environ: Mapping[str, str] | None = None) -> str:
    """REDIS_URL wins; otherwise assembled from REDIS_HOST/PORT/PASSWORD.

    The password is URL-quoted so special characters survive.
    """
    env = os.environ if environ is None else environ
    url = env.get("REDIS_URL")
    if url:
        return url

    host = env.get("REDIS_HOST")
    if not host:
        return "redis://localhost:6379/0"
    port = env.get("REDIS_PORT", "6379")
    password = env.get("REDIS_PASSWORD")
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{host}:{port}/0"

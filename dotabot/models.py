"""
models.py — Provider-agnostic shapes returned by the data layer.

Both adapters produce exactly these models and the cache stores their JSON
dump, so neither callers nor cached entries can tell which provider answered.
Timestamps are unix seconds, durations are seconds, win rates are percents.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, TypeAdapter


class NormalizedMatchRecord(BaseModel):
    match_id: int
    hero_id: int
    hero_name: str
    is_radiant: bool
    won: bool
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    gold_per_min: int = 0
    xp_per_min: int = 0
    net_worth: int = 0
    duration: int = 0
    start_time: int = 0
    items: list[int] = Field(default_factory=list)

    @property
    def result(self) -> str:
        return "WIN" if self.won else "LOSS"


class TopHero(BaseModel):
    hero_id: int
    name: str
    matches: int = 0
    wins: int = 0
    win_rate: float = 0.0


class NormalizedProfile(BaseModel):
    name: str
    avatar: str = ""
    wins: int = 0
    losses: int = 0
    total_matches: int = 0
    win_rate: float = 0.0
    # Medal encoding shared by both upstreams: tens = medal, units = stars (54 = Legend 4)
    rank_tier: int | None = None
    top_heroes: list[TopHero] = Field(default_factory=list)


class NormalizedHistoryEntry(BaseModel):
    match_id: int
    won: bool
    hero_id: int
    hero_name: str
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    gold_per_min: int = 0
    xp_per_min: int = 0
    duration: int = 0


HistoryList = TypeAdapter(list[NormalizedHistoryEntry])

"""
provider_interface.py — The contract both upstream adapters implement.

An adapter only issues the upstream call, maps the upstream schema into
dotabot.models and raises a typed dotabot.errors failure.  Caching, rate
limiting, key rotation and fallback are the orchestrator's job.

`api_key` is chosen by the orchestrator from the KeyPool; None means the call
goes out unauthenticated (only acceptable for providers that allow it).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from dotabot.models import NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile


@runtime_checkable
class ProviderAdapter(Protocol):
    name: str
    requires_key: bool

    async def fetch_last_match(
        self, subject_id: str, api_key: str | None = None
    ) -> NormalizedMatchRecord: ...

    async def fetch_profile(
        self, subject_id: str, api_key: str | None = None
    ) -> NormalizedProfile: ...

    async def fetch_history(
        self, subject_id: str, limit: int, api_key: str | None = None
    ) -> list[NormalizedHistoryEntry]: ...

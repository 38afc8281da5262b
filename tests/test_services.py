"""Wiring of the data layer from Settings."""
import pytest

from dotabot.config import Settings
from dotabot.key_pool import OPENDOTA, STRATZ
from dotabot.opendota_client import OpenDotaClient
from dotabot.services import build_services
from dotabot.stratz_client import StratzClient


@pytest.mark.asyncio
async def test_build_services_wires_pools_and_providers(store, fake_redis) -> None:
    settings = Settings(stratz_tokens=["tok-1", "tok-2"], opendota_keys=["od-1"])

    services = build_services(settings, store=store)

    assert services.key_pool.size(STRATZ) == 2
    assert services.key_pool.size(OPENDOTA) == 1
    assert isinstance(services.orchestrator._primary, StratzClient)
    assert isinstance(services.orchestrator._secondary, OpenDotaClient)

    await store.connect()
    health = services.health()
    assert health["redis"]["connected"] is True
    assert health["providers"][STRATZ] == {"keys": 2, "available": 2}

    await services.aclose()
    assert fake_redis.closed


def test_missing_stratz_tokens_disables_primary(store) -> None:
    services = build_services(Settings(), store=store)
    assert not services.key_pool.is_enabled(STRATZ)

"""Tests for the Stratz GraphQL adapter: error mapping and normalization."""
import json

import httpx
import pytest

from dotabot.errors import NotFound, QuotaExceeded, TransientError
from dotabot.stratz_client import StratzClient, parse_history, parse_last_match, parse_profile


def _match(match_id: int = 7_000_000_001, is_radiant=True, radiant_win=True, **player) -> dict:
    entry = {
        "isRadiant": is_radiant,
        "playerSlot": 0 if is_radiant else 128,
        "hero": {"id": 1, "displayName": "Anti-Mage"},
        "kills": 10,
        "deaths": 2,
        "assists": 8,
        "goldPerMinute": 640,
        "experiencePerMinute": 710,
        "networth": 25_000,
        "item0Id": 1,
        "item1Id": None,
        "item2Id": 116,
    }
    entry.update(player)
    return {
        "id": match_id,
        "didRadiantWin": radiant_win,
        "durationSeconds": 2_100,
        "startDateTime": 1_700_000_000,
        "players": [entry],
    }


def _client(handler) -> StratzClient:
    return StratzClient("https://stratz.test/graphql", transport=httpx.MockTransport(handler))


def test_parse_last_match_normalizes_fields() -> None:
    record = parse_last_match({"player": {"matches": [_match()]}})

    assert record.match_id == 7_000_000_001
    assert record.hero_name == "Anti-Mage"
    assert record.won is True
    assert record.net_worth == 25_000
    assert record.items == [1, 116]
    assert record.duration == 2_100


def test_parse_last_match_falls_back_to_player_slot() -> None:
    match = _match(is_radiant=None, radiant_win=True, playerSlot=130)
    record = parse_last_match({"player": {"matches": [match]}})

    assert record.is_radiant is False
    assert record.won is False


def test_parse_last_match_without_matches_is_not_found() -> None:
    with pytest.raises(NotFound):
        parse_last_match({"player": {"matches": []}})
    with pytest.raises(NotFound):
        parse_last_match({"player": None})


def test_parse_profile_derives_losses_and_win_rate() -> None:
    data = {
        "player": {
            "steamAccount": {"id": 1, "name": "Miracle-", "avatar": "https://a", "seasonRank": 80},
            "winCount": 600,
            "matchCount": 1000,
            "heroesPerformance": [
                {"hero": {"id": 1, "displayName": "Anti-Mage"}, "matchCount": 200, "winCount": 130},
            ],
        }
    }
    profile = parse_profile(data)

    assert profile.losses == 400
    assert profile.win_rate == 60.0
    assert profile.rank_tier == 80
    assert profile.top_heroes[0].win_rate == 65.0


def test_parse_history_is_oldest_first() -> None:
    data = {"player": {"matches": [_match(3), _match(2), _match(1)]}}
    assert [e.match_id for e in parse_history(data)] == [1, 2, 3]


def test_parse_history_empty_is_not_found() -> None:
    with pytest.raises(NotFound):
        parse_history({"player": {"matches": []}})


@pytest.mark.asyncio
async def test_request_carries_bearer_token_and_variables() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"player": {"matches": [_match()]}}})

    record = await _client(handler).fetch_last_match("115431346", "token-abc")

    assert record.match_id == 7_000_000_001
    assert seen["auth"] == "Bearer token-abc"
    assert seen["body"]["variables"] == {"steamAccountId": 115431346}


@pytest.mark.asyncio
async def test_missing_token_is_quota_exceeded_without_a_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(QuotaExceeded):
        await _client(handler).fetch_profile("1", None)


@pytest.mark.asyncio
async def test_http_429_is_quota_exceeded_with_retry_after() -> None:
    client = _client(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))

    with pytest.raises(QuotaExceeded) as exc_info:
        await client.fetch_last_match("1", "token")
    assert exc_info.value.retry_after == 30
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_http_403_html_page_is_quota_exceeded() -> None:
    client = _client(lambda request: httpx.Response(403, text="<!DOCTYPE html><html>blocked</html>"))

    with pytest.raises(QuotaExceeded):
        await client.fetch_last_match("1", "token")


@pytest.mark.asyncio
async def test_server_error_is_transient() -> None:
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(TransientError):
        await client.fetch_last_match("1", "token")


@pytest.mark.asyncio
async def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection reset", request=request)

    with pytest.raises(TransientError):
        await _client(handler).fetch_last_match("1", "token")


@pytest.mark.asyncio
async def test_graphql_rate_limit_error_is_quota_exceeded() -> None:
    body = {"errors": [{"message": "Rate limit exceeded for this token"}], "data": None}
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(QuotaExceeded):
        await client.fetch_last_match("1", "token")


@pytest.mark.asyncio
async def test_other_graphql_error_is_transient() -> None:
    body = {"errors": [{"message": "Unexpected field 'foo'"}]}
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(TransientError):
        await client.fetch_last_match("1", "token")


@pytest.mark.asyncio
async def test_non_json_body_is_transient() -> None:
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(TransientError):
        await client.fetch_last_match("1", "token")


def test_parse_profile_with_null_hero_entry_is_transient() -> None:
    data = {
        "player": {
            "steamAccount": {"id": 1, "name": "Miracle-"},
            "winCount": 1,
            "matchCount": 2,
            "heroesPerformance": [None],
        }
    }
    with pytest.raises(TransientError):
        parse_profile(data)


def test_parse_last_match_with_null_match_entry_is_transient() -> None:
    with pytest.raises(TransientError):
        parse_last_match({"player": {"matches": [None]}})


def test_missing_radiant_win_is_transient_not_a_loss() -> None:
    match = _match(radiant_win=None)
    with pytest.raises(TransientError):
        parse_last_match({"player": {"matches": [match]}})
    with pytest.raises(TransientError):
        parse_history({"player": {"matches": [match]}})

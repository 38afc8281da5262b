import asyncio
import fnmatch
import math

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dotabot.cache import ResponseCache
from dotabot.config import Settings
from dotabot.key_pool import OPENDOTA, STRATZ, KeyPool
from dotabot.models import NormalizedHistoryEntry, NormalizedMatchRecord, NormalizedProfile
from dotabot.rate_limiter import RateLimiter
from dotabot.redis_store import RedisStore


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True) with a controllable clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.data: dict[str, str] = {}
        self.expires: dict[str, float] = {}
        self.fail = False
        self.failing_pings = 0
        self.pings = 0
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.expires.get(key)
        if deadline is not None and deadline <= self.clock():
            self.data.pop(key, None)
            self.expires.pop(key, None)

    async def ping(self) -> bool:
        self.pings += 1
        self._check()
        if self.failing_pings:
            self.failing_pings -= 1
            raise RedisConnectionError("connection refused")
        return True

    async def get(self, key):
        self._check()
        self._purge(key)
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        if ex:
            self.expires[key] = self.clock() + ex
        else:
            self.expires.pop(key, None)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def incr(self, key):
        self._check()
        self._purge(key)
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key, seconds):
        self._check()
        self._purge(key)
        if key not in self.data:
            return False
        self.expires[key] = self.clock() + seconds
        return True

    async def ttl(self, key):
        self._check()
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expires:
            return -1
        return math.ceil(self.expires[key] - self.clock())

    async def exists(self, *keys):
        self._check()
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.data
        return count

    async def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.data):
            self._purge(key)
            if key in self.data and (match is None or fnmatch.fnmatchcase(key, match)):
                yield key

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider:
    """Scripted provider adapter: each operation returns a value or raises an exception."""

    def __init__(self, name: str, requires_key: bool = True, delay: float = 0.0) -> None:
        self.name = name
        self.requires_key = requires_key
        self.delay = delay
        self.responses: dict[str, object] = {}
        self.calls: list[tuple[str, str, object]] = []

    def calls_for(self, operation: str) -> int:
        return sum(1 for op, _, _ in self.calls if op == operation)

    async def _respond(self, operation: str, subject_id: str, api_key):
        self.calls.append((operation, subject_id, api_key))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.responses[operation]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def fetch_last_match(self, subject_id, api_key=None):
        return await self._respond("last_match", subject_id, api_key)

    async def fetch_profile(self, subject_id, api_key=None):
        return await self._respond("profile", subject_id, api_key)

    async def fetch_history(self, subject_id, limit, api_key=None):
        return await self._respond("history", subject_id, api_key)


def make_match(match_id: int = 7_000_000_001, won: bool = True, hero_name: str = "Anti-Mage") -> NormalizedMatchRecord:
    return NormalizedMatchRecord(
        match_id=match_id,
        hero_id=1,
        hero_name=hero_name,
        is_radiant=True,
        won=won,
        kills=10,
        deaths=2,
        assists=8,
        gold_per_min=640,
        xp_per_min=710,
        net_worth=25_000,
        duration=2_100,
        start_time=1_700_000_000,
        items=[1, 50, 116],
    )


def make_profile(name: str = "Miracle-") -> NormalizedProfile:
    return NormalizedProfile(name=name, wins=60, losses=40, total_matches=100, win_rate=60.0, rank_tier=80)


def make_history(n: int = 3) -> list[NormalizedHistoryEntry]:
    return [
        NormalizedHistoryEntry(match_id=100 + i, won=i % 2 == 0, hero_id=1, hero_name="Anti-Mage")
        for i in range(n)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def store(fake_redis, clock) -> RedisStore:
    return RedisStore("redis://fake:6379/0", client=fake_redis, clock=clock)


@pytest.fixture
def cache(store) -> ResponseCache:
    return ResponseCache(store)


@pytest.fixture
def limiter(store) -> RateLimiter:
    return RateLimiter(store)


@pytest.fixture
def key_pool(clock) -> KeyPool:
    return KeyPool({STRATZ: ["stratz-token-a", "stratz-token-b"], OPENDOTA: []}, clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(provider_deadline_seconds=0.5)


@pytest.fixture
def primary() -> FakeProvider:
    return FakeProvider("stratz", requires_key=True)


@pytest.fixture
def secondary() -> FakeProvider:
    return FakeProvider("opendota", requires_key=False)

"""
Pytest configuration for visitor presence tests.
"""
import os
import sys
from typing import Dict, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from visitor_presence.store import EphemeralStore

START_TIME = 1_760_000_000.0  # 2025-10-09T08:53:20Z


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def _parse_bound(bound) -> Tuple[float, bool]:
    """Redis score bound -> (value, exclusive)."""
    if isinstance(bound, (int, float)):
        return float(bound), False
    text = str(bound)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    return float(text), exclusive


def _in_range(score: float, low, high) -> bool:
    low_value, low_exclusive = _parse_bound(low)
    high_value, high_exclusive = _parse_bound(high)
    above = score > low_value if low_exclusive else score >= low_value
    below = score < high_value if high_exclusive else score <= high_value
    return above and below


class InMemoryRedis:
    """
    Subset of the redis.asyncio client used by EphemeralStore.

    TTLs follow the injected clock so expiry can be simulated; `ttl` is
    only used by tests to inspect expiry.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.strings: Dict[str, Tuple[str, Optional[float]]] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}
        self.closed = False

    def _expire_stale(self, key: str):
        entry = self.strings.get(key)
        if entry and entry[1] is not None and entry[1] <= self.clock():
            del self.strings[key]

    async def ping(self):
        return True

    async def get(self, key):
        self._expire_stale(key)
        entry = self.strings.get(key)
        return entry[0] if entry else None

    async def setex(self, key, ttl, value):
        self.strings[key] = (value, self.clock() + ttl)
        return True

    async def ttl(self, key):
        self._expire_stale(key)
        entry = self.strings.get(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return int(entry[1] - self.clock())

    async def zadd(self, key, mapping):
        members = self.sorted_sets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        for member, score in mapping.items():
            members[member] = float(score)
        return added

    async def zremrangebyscore(self, key, low, high):
        members = self.sorted_sets.get(key, {})
        stale = [m for m, score in members.items() if _in_range(score, low, high)]
        for member in stale:
            del members[member]
        return len(stale)

    async def zcount(self, key, low, high):
        members = self.sorted_sets.get(key, {})
        return sum(1 for score in members.values() if _in_range(score, low, high))

    async def zcard(self, key):
        return len(self.sorted_sets.get(key, {}))

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return InMemoryRedis(clock)


@pytest.fixture
def store(fake_redis):
    """Store backed by the in-memory client."""
    return EphemeralStore(client=fake_redis)


@pytest.fixture
def failing_client():
    """Client whose every command fails with a connection error."""
    client = AsyncMock()
    error = RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
    for command in ("ping", "get", "setex", "zadd",
                    "zremrangebyscore", "zcount", "zcard"):
        getattr(client, command).side_effect = error
    return client


@pytest.fixture
def failing_store(failing_client):
    """Store whose backing Redis is down."""
    return EphemeralStore(client=failing_client)


# Pytest markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )

"""Shared fixtures: a controllable clock, signal factories, broken backends."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from sosradar.models.signal import GeoSignal
from sosradar.services.geo import GeoPoint
from sosradar.services.store import InMemoryStoreBackend

# Central Bengaluru; any point works, this one is easy to recognise in logs.
ORIGIN = GeoPoint(12.9716, 77.5946)

T0 = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class BrokenBackend:
    """Store backend whose every operation fails like a dropped connection."""

    async def get(self, key: str) -> bytes | None:
        raise ConnectionError("backend down")

    async def get_many(self, keys: list[str]) -> list[bytes | None]:
        raise ConnectionError("backend down")

    async def set(self, key: str, value: bytes) -> None:
        raise ConnectionError("backend down")

    async def delete(self, key: str) -> bool:
        raise ConnectionError("backend down")

    async def keys(self, prefix: str) -> list[str]:
        raise ConnectionError("backend down")

    async def zadd(self, key: str, member: str, score: float) -> None:
        raise ConnectionError("backend down")

    async def zrem(self, key: str, member: str) -> None:
        raise ConnectionError("backend down")

    async def zrangebyscore(self, key: str, low: float, high: float) -> list[str]:
        raise ConnectionError("backend down")

    async def acquire_lock(self, name: str) -> None:
        raise ConnectionError("backend down")

    async def release_lock(self, name: str, token: object) -> None:
        raise ConnectionError("backend down")


class YieldingBackend(InMemoryStoreBackend):
    """In-memory backend that hands control back to the loop on every I/O.

    A real network store suspends the caller on each round trip; this
    lets concurrent coroutines interleave inside critical sections.
    """

    async def get(self, key: str) -> bytes | None:
        await asyncio.sleep(0)
        return await super().get(key)

    async def get_many(self, keys: list[str]) -> list[bytes | None]:
        await asyncio.sleep(0)
        return await super().get_many(keys)

    async def set(self, key: str, value: bytes) -> None:
        await asyncio.sleep(0)
        await super().set(key, value)

    async def keys(self, prefix: str) -> list[str]:
        await asyncio.sleep(0)
        return await super().keys(prefix)

    async def zadd(self, key: str, member: str, score: float) -> None:
        await asyncio.sleep(0)
        await super().zadd(key, member, score)

    async def zrangebyscore(self, key: str, low: float, high: float) -> list[str]:
        await asyncio.sleep(0)
        return await super().zrangebyscore(key, low, high)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broken_backend() -> BrokenBackend:
    return BrokenBackend()


@pytest.fixture
def yielding_backend() -> YieldingBackend:
    return YieldingBackend()


@pytest.fixture
def make_signal() -> Callable[..., GeoSignal]:
    """Factory for persisted-style geo signals."""

    def _make(
        point: GeoPoint = ORIGIN,
        captured_at: datetime = T0,
        reporter_id: str = "reporter-1",
        **extra,
    ) -> GeoSignal:
        return GeoSignal(
            reporter_id=reporter_id,
            latitude=point.latitude,
            longitude=point.longitude,
            captured_at=captured_at,
            **extra,
        )

    return _make

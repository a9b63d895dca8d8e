"""Tests for radius-and-window proximity queries."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from sosradar.models.signal import LegacyTextSignal
from sosradar.services.errors import DependencyUnavailable, InvalidQuery
from sosradar.services.geo import GeoPoint, offset_point
from sosradar.services.proximity import ProximityIndex
from sosradar.services.signal_store import SignalStore
from sosradar.services.store import RecordStore

ORIGIN = GeoPoint(12.9716, 77.5946)
T0 = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)
WINDOW = (T0 - timedelta(minutes=10), T0)


@pytest.fixture
def signals() -> SignalStore:
    return SignalStore(RecordStore(namespace="signal:"))


@pytest.fixture
def index(signals: SignalStore) -> ProximityIndex:
    return ProximityIndex(signals)


class TestQueryValidation:
    @pytest.mark.parametrize(
        ("point", "radius"),
        [
            (GeoPoint(91.0, 0.0), 15.0),
            (GeoPoint(0.0, math.nan), 15.0),
            (ORIGIN, 0.0),
            (ORIGIN, -5.0),
            (ORIGIN, math.inf),
        ],
    )
    async def test_rejects_bad_point_or_radius(self, index: ProximityIndex, point: GeoPoint, radius: float) -> None:
        with pytest.raises(InvalidQuery):
            await index.query(point, radius, *WINDOW)

    async def test_rejects_inverted_window(self, index: ProximityIndex) -> None:
        with pytest.raises(InvalidQuery):
            await index.query(ORIGIN, 15.0, T0, T0 - timedelta(seconds=1))

    async def test_empty_window_is_allowed(self, index: ProximityIndex) -> None:
        assert await index.query(ORIGIN, 15.0, T0, T0) == []


class TestQueryResults:
    async def test_radius_boundary(self, index: ProximityIndex, signals: SignalStore, make_signal) -> None:
        inside = make_signal(offset_point(ORIGIN, 14.9, 0.0), T0)
        outside = make_signal(offset_point(ORIGIN, -15.1, 0.0), T0)
        await signals.persist(inside)
        await signals.persist(outside)

        found = await index.query(ORIGIN, 15.0, *WINDOW)
        assert [s.signal_id for s in found] == [inside.signal_id]

    async def test_window_boundary(self, index: ProximityIndex, signals: SignalStore, make_signal) -> None:
        oldest_kept = make_signal(ORIGIN, WINDOW[0])
        too_old = make_signal(ORIGIN, WINDOW[0] - timedelta(seconds=1))
        too_new = make_signal(ORIGIN, T0 + timedelta(seconds=1))
        for s in (oldest_kept, too_old, too_new):
            await signals.persist(s)

        found = await index.query(ORIGIN, 15.0, *WINDOW)
        assert [s.signal_id for s in found] == [oldest_kept.signal_id]

    async def test_results_sorted_and_repeatable(self, index: ProximityIndex, signals: SignalStore, make_signal) -> None:
        for i in (3, 1, 2):
            await signals.persist(make_signal(offset_point(ORIGIN, i, i), T0 - timedelta(seconds=i)))

        first = await index.query(ORIGIN, 15.0, *WINDOW)
        second = await index.query(ORIGIN, 15.0, *WINDOW)
        assert [s.captured_at for s in first] == sorted(s.captured_at for s in first)
        assert first == second, "an unchanged store must give the same answer"

    async def test_near_pole_uses_great_circle(self, index: ProximityIndex, signals: SignalStore, make_signal) -> None:
        """0.01 deg of longitude is ~0.2 m at 89.99N; a degree-box check would miss it."""
        pole_point = GeoPoint(89.99, 20.0)
        neighbour = make_signal(GeoPoint(89.99, 20.01), T0)
        await signals.persist(neighbour)

        found = await index.query(pole_point, 15.0, *WINDOW)
        assert [s.signal_id for s in found] == [neighbour.signal_id]

    async def test_across_antimeridian(self, index: ProximityIndex, signals: SignalStore, make_signal) -> None:
        east = make_signal(GeoPoint(-16.5, 179.99995), T0)
        await signals.persist(east)

        found = await index.query(GeoPoint(-16.5, -179.99995), 15.0, *WINDOW)
        assert [s.signal_id for s in found] == [east.signal_id]

    async def test_legacy_signals_never_match(self, index: ProximityIndex, signals: SignalStore) -> None:
        await signals.persist(LegacyTextSignal(reporter_id="r1", location="here", captured_at=T0))
        assert await index.query(ORIGIN, 15.0, *WINDOW) == []

    async def test_store_failure_is_dependency_unavailable(self, broken_backend) -> None:
        index = ProximityIndex(SignalStore(RecordStore(broken_backend, namespace="signal:")))
        with pytest.raises(DependencyUnavailable):
            await index.query(ORIGIN, 15.0, *WINDOW)

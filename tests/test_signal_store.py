"""Tests for SOS signal persistence and the responder triage operations."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from sosradar.models.signal import GeoSignal, LegacyTextSignal
from sosradar.services.errors import PersistenceError, SignalNotFound, StoreError
from sosradar.services.signal_store import SignalStore
from sosradar.services.store import InMemoryStoreBackend, RecordStore

T0 = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


class LoadCountingBackend(InMemoryStoreBackend):
    """Records every key read through ``get_many``."""

    def __init__(self) -> None:
        super().__init__()
        self.loaded: list[str] = []

    async def get_many(self, keys: list[str]) -> list[bytes | None]:
        self.loaded.extend(keys)
        return await super().get_many(keys)


@pytest.fixture
def store() -> SignalStore:
    return SignalStore(RecordStore(namespace="signal:"))


async def _seed(store: SignalStore, make_signal, count: int) -> list[GeoSignal]:
    signals = [make_signal(captured_at=T0 + timedelta(seconds=i)) for i in range(count)]
    # Persist newest first so ordering can't come from insertion order.
    for signal in reversed(signals):
        await store.persist(signal)
    return signals


class TestPersist:
    async def test_persist_then_get(self, store: SignalStore, make_signal) -> None:
        signal = make_signal()
        assert await store.persist(signal) == signal.signal_id
        assert await store.get(signal.signal_id) == signal

    async def test_legacy_signal_round_trips(self, store: SignalStore) -> None:
        legacy = LegacyTextSignal(reporter_id="r1", location="Stand B", captured_at=T0)
        await store.persist(legacy)
        restored = await store.get(legacy.signal_id)
        assert isinstance(restored, LegacyTextSignal)
        assert restored.location == "Stand B"

    async def test_backend_failure_is_persistence_error(self, broken_backend, make_signal) -> None:
        store = SignalStore(RecordStore(broken_backend, namespace="signal:"))
        with pytest.raises(PersistenceError):
            await store.persist(make_signal())


class TestListSignals:
    async def test_oldest_first(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 5)
        listed = await store.list_signals()
        assert [s.signal_id for s in listed] == [s.signal_id for s in signals]

    async def test_skip_and_limit(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 5)
        page = await store.list_signals(skip=1, limit=2)
        assert [s.signal_id for s in page] == [signals[1].signal_id, signals[2].signal_id]

    async def test_limit_is_capped(self, make_signal) -> None:
        store = SignalStore(RecordStore(namespace="signal:"), default_limit=2, max_limit=3)
        await _seed(store, make_signal, 5)
        assert len(await store.list_signals(limit=1_000)) == 3, "limit above the cap is clamped"
        assert len(await store.list_signals()) == 2, "no limit means the default page size"
        assert len(await store.list_signals(limit=0)) == 2, "non-positive limit means the default"

    async def test_negative_skip_is_zero(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 3)
        listed = await store.list_signals(skip=-10)
        assert listed[0].signal_id == signals[0].signal_id

    async def test_unread_only(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 3)
        await store.mark_read({signals[0].signal_id})
        unread = await store.list_signals(unread_only=True)
        assert [s.signal_id for s in unread] == [signals[1].signal_id, signals[2].signal_id]

    async def test_read_failure_propagates(self, broken_backend) -> None:
        store = SignalStore(RecordStore(broken_backend, namespace="signal:"))
        with pytest.raises(StoreError):
            await store.list_signals()


class TestMarkRead:
    async def test_counts_only_changed_signals(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 3)
        first = await store.mark_read({signals[0].signal_id, signals[1].signal_id, "unknown"})
        second = await store.mark_read({signals[0].signal_id, signals[2].signal_id})

        assert first == 2, "unknown ids are skipped"
        assert second == 1, "already-read signals are not counted again"

    async def test_only_read_flag_changes(self, store: SignalStore, make_signal) -> None:
        signal = make_signal(notes="trapped near exit 2")
        await store.persist(signal)
        await store.mark_read({signal.signal_id})

        stored = await store.get(signal.signal_id)
        assert stored.is_read is True
        assert stored.model_dump(exclude={"is_read"}) == signal.model_dump(exclude={"is_read"})


class TestDelete:
    async def test_delete_removes_signal(self, store: SignalStore, make_signal) -> None:
        signal = make_signal()
        await store.persist(signal)
        await store.delete(signal.signal_id)
        assert await store.get(signal.signal_id) is None

    async def test_delete_unknown_raises(self, store: SignalStore) -> None:
        with pytest.raises(SignalNotFound):
            await store.delete("no-such-signal")


class TestGeoSignalsBetween:
    async def test_window_is_inclusive_and_skips_legacy(self, store: SignalStore, make_signal) -> None:
        signals = await _seed(store, make_signal, 5)
        await store.persist(LegacyTextSignal(reporter_id="r1", captured_at=T0 + timedelta(seconds=2)))

        found = await store.geo_signals_between(T0 + timedelta(seconds=1), T0 + timedelta(seconds=3))
        assert {s.signal_id for s in found} == {s.signal_id for s in signals[1:4]}
        assert all(isinstance(s, GeoSignal) for s in found)

    async def test_only_signals_in_window_are_loaded(self, make_signal) -> None:
        backend = LoadCountingBackend()
        store = SignalStore(RecordStore(backend, namespace="signal:"))
        for i in range(200):
            await store.persist(make_signal(captured_at=T0 - timedelta(hours=1, seconds=i)))
        recent = [make_signal(captured_at=T0 + timedelta(seconds=i)) for i in range(3)]
        for signal in recent:
            await store.persist(signal)

        backend.loaded.clear()
        found = await store.geo_signals_between(T0, T0 + timedelta(minutes=10))

        assert {s.signal_id for s in found} == {s.signal_id for s in recent}
        assert len(backend.loaded) == 3, "history outside the window must not be read"

    async def test_deleted_signal_leaves_the_window(self, store: SignalStore, make_signal) -> None:
        signal = make_signal()
        await store.persist(signal)
        await store.delete(signal.signal_id)
        assert await store.geo_signals_between(T0, T0) == []

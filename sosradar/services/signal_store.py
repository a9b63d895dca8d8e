"""Durable store of raw SOS signals and the triage surface around it.

Implements the record / list / mark-read / delete operations responders
use on individual signals, plus the time-window read the proximity index
needs.  Every signal is indexed by capture time, geo signals a second
time on their own, so a window read only loads the signals inside it.

Backend failures are translated into
:class:`~sosradar.services.errors.PersistenceError` on the write path and
left as :class:`~sosradar.services.errors.StoreError` on read paths so
callers can classify them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Final

import structlog

from sosradar.models.signal import GeoSignal, LegacyTextSignal, signal_record_adapter
from sosradar.services.errors import PersistenceError, SignalNotFound, StoreError
from sosradar.services.store import RecordStore

logger = structlog.get_logger(__name__)

SignalRecordType = GeoSignal | LegacyTextSignal

DEFAULT_LIST_LIMIT: Final[int] = 100
MAX_LIST_LIMIT: Final[int] = 500

# Score indexes, keyed by capture time (POSIX seconds).
BY_CAPTURE_TIME: Final[str] = "captured_at"
GEO_BY_CAPTURE_TIME: Final[str] = "geo_captured_at"


def _sort_key(signal: SignalRecordType) -> tuple[datetime, str]:
    return signal.captured_at, signal.signal_id


class SignalStore:
    """Signal persistence over a :class:`RecordStore` namespace."""

    __slots__ = ("_default_limit", "_max_limit", "_records")

    def __init__(
        self,
        records: RecordStore,
        *,
        default_limit: int = DEFAULT_LIST_LIMIT,
        max_limit: int = MAX_LIST_LIMIT,
    ) -> None:
        self._records = records
        self._default_limit = default_limit
        self._max_limit = max_limit

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def persist(self, signal: SignalRecordType) -> str:
        """Durably record *signal* and return its id."""
        score = signal.captured_at.timestamp()
        try:
            await self._records.put(signal.signal_id, signal.model_dump(mode="json"))
            await self._records.index_add(BY_CAPTURE_TIME, signal.signal_id, score)
            if isinstance(signal, GeoSignal):
                await self._records.index_add(GEO_BY_CAPTURE_TIME, signal.signal_id, score)
        except StoreError as exc:
            logger.error("signal_store.persist_failed", signal_id=signal.signal_id, kind=signal.kind)
            raise PersistenceError(f"Failed to persist signal {signal.signal_id}") from exc

        logger.info("signal_store.persisted", signal_id=signal.signal_id, kind=signal.kind)
        return signal.signal_id

    async def mark_read(self, signal_ids: set[str]) -> int:
        """Flag the given signals as read; return how many were updated."""
        updated = 0
        for signal_id in sorted(signal_ids):
            signal = await self.get(signal_id)
            if signal is None or signal.is_read:
                continue
            await self._records.put(signal_id, signal.model_copy(update={"is_read": True}).model_dump(mode="json"))
            updated += 1

        logger.info("signal_store.marked_read", requested=len(signal_ids), updated=updated)
        return updated

    async def delete(self, signal_id: str) -> None:
        """Remove a signal record; raise :class:`SignalNotFound` if absent."""
        if not await self._records.delete(signal_id):
            raise SignalNotFound(signal_id)
        await self._records.index_remove(BY_CAPTURE_TIME, signal_id)
        await self._records.index_remove(GEO_BY_CAPTURE_TIME, signal_id)
        logger.info("signal_store.deleted", signal_id=signal_id)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get(self, signal_id: str) -> SignalRecordType | None:
        document = await self._records.get(signal_id)
        if document is None:
            return None
        return signal_record_adapter.validate_python(document)

    async def _load(self, signal_ids: list[str]) -> list[SignalRecordType]:
        return [signal_record_adapter.validate_python(doc) for doc in await self._records.get_many(signal_ids)]

    async def list_signals(
        self,
        *,
        unread_only: bool = False,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[SignalRecordType]:
        """Return signals oldest first, with paging.

        *limit* defaults to 100 and is capped at 500; a negative *skip*
        is treated as 0.
        """
        if limit is None or limit <= 0:
            limit = self._default_limit
        limit = min(limit, self._max_limit)
        skip = max(skip, 0)

        signal_ids = await self._records.index_range(BY_CAPTURE_TIME)
        if not unread_only:
            page = await self._load(signal_ids[skip:skip + limit])
            return sorted(page, key=_sort_key)

        signals = [s for s in await self._load(signal_ids) if not s.is_read]
        signals.sort(key=_sort_key)
        return signals[skip:skip + limit]

    async def geo_signals_between(self, since: datetime, until: datetime) -> list[GeoSignal]:
        """Return geo signals captured in ``[since, until]`` (inclusive)."""
        signal_ids = await self._records.index_range(GEO_BY_CAPTURE_TIME, since.timestamp(), until.timestamp())
        return [
            s for s in await self._load(signal_ids)
            if isinstance(s, GeoSignal) and since <= s.captured_at <= until
        ]

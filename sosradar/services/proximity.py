"""Spatial-temporal proximity queries over stored SOS signals.

Answers one question: which geo signals lie within great-circle
distance R of point P and were captured inside ``[since, until]``?
The query is read-only and deterministic for an unchanged store.
"""

from __future__ import annotations

import math
from datetime import datetime

import structlog

from sosradar.models.signal import GeoSignal
from sosradar.services.errors import DependencyUnavailable, InvalidQuery, StoreError
from sosradar.services.geo import GeoPoint, haversine_distance, is_valid_coordinate, latitude_span
from sosradar.services.signal_store import SignalStore

logger = structlog.get_logger(__name__)


class ProximityIndex:
    """Radius-and-window lookup of SOS signals.

    Candidates are read from the signal store for the time window, cut
    down by a latitude bounding band (exact on a sphere, independent of
    longitude), and then checked with the Haversine distance.

    Usage::

        index = ProximityIndex(signal_store)
        cluster = await index.query(GeoPoint(12.9716, 77.5946), 15.0, since, now)
    """

    __slots__ = ("_signals",)

    def __init__(self, signals: SignalStore) -> None:
        self._signals = signals

    @staticmethod
    def _validate(point: GeoPoint, radius_m: float, since: datetime, until: datetime) -> None:
        if not is_valid_coordinate(point.latitude, point.longitude):
            raise InvalidQuery(f"Invalid point ({point.latitude}, {point.longitude})")
        if not math.isfinite(radius_m) or radius_m <= 0:
            raise InvalidQuery(f"Radius must be a positive number of metres, got {radius_m}")
        if since > until:
            raise InvalidQuery("Window start must not be after window end")

    async def query(
        self,
        point: GeoPoint,
        radius_m: float,
        since: datetime,
        until: datetime,
    ) -> list[GeoSignal]:
        """Return signals within *radius_m* of *point* captured in ``[since, until]``.

        Raises
        ------
        InvalidQuery
            If the point, radius or window is malformed.
        DependencyUnavailable
            If the signal store cannot be read.
        """
        self._validate(point, radius_m, since, until)

        band = latitude_span(radius_m)
        min_lat = point.latitude - band
        max_lat = point.latitude + band

        try:
            candidates = await self._signals.geo_signals_between(since, until)
        except StoreError as exc:
            logger.error("proximity.store_unavailable", exc_info=True)
            raise DependencyUnavailable("Signal store unavailable for proximity query") from exc

        matches: list[GeoSignal] = []
        for signal in candidates:
            if not min_lat <= signal.latitude <= max_lat:
                continue
            distance = haversine_distance(
                point.latitude, point.longitude, signal.latitude, signal.longitude
            )
            if distance <= radius_m:
                matches.append(signal)

        matches.sort(key=lambda s: (s.captured_at, s.signal_id))

        logger.debug(
            "proximity.query",
            latitude=point.latitude,
            longitude=point.longitude,
            radius_m=radius_m,
            candidates=len(candidates),
            matches=len(matches),
        )
        return matches

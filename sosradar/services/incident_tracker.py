"""Mass incident membership and lifecycle.

For every new geo signal the detection pipeline hands the tracker the
cluster around it (including the signal itself).  The tracker then:

1. Leaves the signal **isolated** if the cluster is below threshold.
2. Otherwise looks for an ``active`` incident whose centroid lies within
   the trigger radius of the new signal -- nearest centroid wins, ties go
   to the earliest created.
3. **Creates** an incident centred on the new signal when none matches.
4. **Updates** the match in place: ``member_count`` is recomputed from
   the fresh cluster (never incremented) and ``last_signal_at`` advances.
   The centroid never moves.

Steps 2-4 form one critical section.  Locks are keyed by latitude band
(bands at least one trigger radius tall); a decision holds its own band
and both neighbours, taken in ascending order.  Two points within one
radius of each other always share a band lock, so concurrent signals
from one real event cannot both create an incident.  The locks live in
the store backend, so workers sharing one Redis also share them.

Incidents leave ``active`` only through :meth:`IncidentTracker.resolve`;
there is no automatic ageing.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import structlog

from sosradar.models.enums import IncidentStatus
from sosradar.models.incident import Incident
from sosradar.models.signal import GeoSignal
from sosradar.services.errors import DependencyUnavailable, IncidentNotFound, StoreError
from sosradar.services.geo import GeoPoint, haversine_distance, latitude_band
from sosradar.services.incident_store import IncidentStore

logger = structlog.get_logger(__name__)


class TrackerAction(StrEnum):
    __slots__ = ()

    ISOLATED = "isolated"
    CREATED = "created"
    UPDATED = "updated"


@dataclass(slots=True, frozen=True)
class TrackerResult:
    """What the tracker did with one signal's cluster."""

    action: TrackerAction
    cluster_size: int
    incident: Incident | None = None

    @property
    def triggered(self) -> bool:
        return self.action != TrackerAction.ISOLATED


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IncidentTracker:
    """Sole owner and mutator of mass incidents.

    Parameters
    ----------
    store:
        Incident persistence.
    threshold:
        Minimum cluster size that creates or sustains an incident.
    radius_m:
        Trigger radius: how close an active incident's centroid must be
        to the new signal for the signal to join it.
    clock:
        Source of "now" for resolve timestamps.
    """

    __slots__ = ("_band_height_m", "_clock", "_radius_m", "_store", "_threshold")

    def __init__(
        self,
        store: IncidentStore,
        *,
        threshold: int = 8,
        radius_m: float = 15.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        self._store = store
        self._threshold = threshold
        self._radius_m = radius_m
        self._band_height_m = radius_m
        self._clock = clock

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def radius_m(self) -> float:
        return self._radius_m

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _band_guard(self, point: GeoPoint) -> AsyncIterator[None]:
        band = latitude_band(point.latitude, self._band_height_m)
        async with contextlib.AsyncExitStack() as stack:
            for key in (band - 1, band, band + 1):
                await stack.enter_async_context(self._store.band_lock(key))
            yield

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _nearest_active(self, point: GeoPoint, incidents: Sequence[Incident]) -> Incident | None:
        best: tuple[float, datetime, str] | None = None
        chosen: Incident | None = None
        for incident in incidents:
            if not incident.is_active:
                continue
            distance = haversine_distance(
                point.latitude, point.longitude,
                incident.centroid_latitude, incident.centroid_longitude,
            )
            if distance > self._radius_m:
                continue
            rank = (distance, incident.created_at, incident.incident_id)
            if best is None or rank < best:
                best = rank
                chosen = incident
        return chosen

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def observe(
        self,
        signal: GeoSignal,
        cluster: Sequence[GeoSignal],
        now: datetime,
    ) -> TrackerResult:
        """Create, update, or skip an incident for *signal*'s *cluster*.

        Raises
        ------
        DependencyUnavailable
            If the incident store cannot be read or written.
        """
        members = {s.signal_id: s for s in cluster}
        members.setdefault(signal.signal_id, signal)
        cluster_size = len(members)

        log = logger.bind(signal_id=signal.signal_id, cluster_size=cluster_size)

        if cluster_size < self._threshold:
            log.debug("incident_tracker.isolated", threshold=self._threshold)
            return TrackerResult(action=TrackerAction.ISOLATED, cluster_size=cluster_size)

        point = GeoPoint(signal.latitude, signal.longitude)
        try:
            async with self._band_guard(point):
                active = await self._store.list_active()
                match = self._nearest_active(point, active)

                if match is None:
                    incident = Incident(
                        centroid_latitude=signal.latitude,
                        centroid_longitude=signal.longitude,
                        radius_meters=self._radius_m,
                        member_count=cluster_size,
                        first_signal_at=min(s.captured_at for s in members.values()),
                        last_signal_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                    await self._store.save(incident)
                    log.warning(
                        "incident_tracker.incident_created",
                        incident_id=incident.incident_id,
                        latitude=incident.centroid_latitude,
                        longitude=incident.centroid_longitude,
                    )
                    return TrackerResult(
                        action=TrackerAction.CREATED, cluster_size=cluster_size, incident=incident,
                    )

                incident = match.model_copy(
                    update={
                        "member_count": cluster_size,
                        "last_signal_at": max(match.last_signal_at, now),
                        "updated_at": now,
                    }
                )
                await self._store.save(incident)
                log.info(
                    "incident_tracker.incident_updated",
                    incident_id=incident.incident_id,
                    member_count=incident.member_count,
                )
                return TrackerResult(
                    action=TrackerAction.UPDATED, cluster_size=cluster_size, incident=incident,
                )
        except StoreError as exc:
            log.error("incident_tracker.store_unavailable", exc_info=True)
            raise DependencyUnavailable("Incident store unavailable") from exc

    async def resolve(self, incident_id: str, resolved_by: str) -> Incident:
        """Move an incident to ``resolved`` (operator action).

        Resolving an already-resolved incident returns it unchanged.

        Raises
        ------
        IncidentNotFound
            If no incident has *incident_id*.
        DependencyUnavailable
            If the incident store cannot be read or written.
        """
        try:
            incident = await self._store.get(incident_id)
            if incident is None:
                raise IncidentNotFound(incident_id)

            point = GeoPoint(incident.centroid_latitude, incident.centroid_longitude)
            async with self._band_guard(point):
                # Re-read under the lock; an observe() may have updated it meanwhile.
                incident = await self._store.get(incident_id)
                if incident is None:
                    raise IncidentNotFound(incident_id)
                if not incident.is_active:
                    return incident

                now = self._clock()
                incident = incident.model_copy(
                    update={
                        "status": IncidentStatus.RESOLVED,
                        "resolved_at": now,
                        "resolved_by": resolved_by,
                        "updated_at": now,
                    }
                )
                await self._store.save(incident)
        except StoreError as exc:
            logger.error("incident_tracker.store_unavailable", incident_id=incident_id, exc_info=True)
            raise DependencyUnavailable("Incident store unavailable") from exc

        logger.info("incident_tracker.incident_resolved", incident_id=incident_id, resolved_by=resolved_by)
        return incident

    async def get(self, incident_id: str) -> Incident:
        try:
            incident = await self._store.get(incident_id)
        except StoreError as exc:
            raise DependencyUnavailable("Incident store unavailable") from exc
        if incident is None:
            raise IncidentNotFound(incident_id)
        return incident

    async def list_incidents(self, status: IncidentStatus | None = None) -> list[Incident]:
        try:
            return await self._store.list_incidents(status)
        except StoreError as exc:
            raise DependencyUnavailable("Incident store unavailable") from exc

"""SOS ingestion and mass-incident detection pipeline.

Per incoming payload, strictly in this order:

1. **Resolve reporter** -- no identity, no signal.
2. **Validate** -- a finite, in-range coordinate makes it a geo signal;
   anything else is rerouted to the legacy free-text report path.
3. **Snapshot** name / mobile / age / allergies from the reporter's
   profile, payload values taking precedence.
4. **Persist** the signal.  Fatal on failure; nothing below runs.
5. **Query** the proximity index around the new signal.
6. **Delegate** to the incident tracker.
7. **Return** the signal plus what happened to the incident set.

Steps 5-6 are best-effort relative to step 4: a store outage or timeout
there yields a partial success (``clustering="unavailable"``) and the
signal stays recorded.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from sosradar.models.enums import ClusteringStatus, ReporterRole
from sosradar.models.signal import (
    GeoSignal,
    GeoSignalPayload,
    LegacyTextPayload,
    LegacyTextSignal,
)
from sosradar.services.errors import DependencyUnavailable, SignalValidationError, Unauthenticated
from sosradar.services.geo import GeoPoint
from sosradar.services.incident_tracker import IncidentTracker, TrackerResult
from sosradar.services.profiles import ProfileDirectory, ReporterProfile, build_snapshot
from sosradar.services.proximity import ProximityIndex
from sosradar.services.signal_store import SignalStore

logger = structlog.get_logger(__name__)

_COORDINATE_FIELDS = frozenset({"latitude", "longitude"})


# ---------------------------------------------------------------------------
# Data objects
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Reporter:
    """An authenticated reporter as resolved from the request."""

    reporter_id: str
    role: ReporterRole = ReporterRole.PATIENT


@dataclass(slots=True, frozen=True)
class DetectionOutcome:
    """Result of ingesting one SOS payload."""

    signal: GeoSignal | LegacyTextSignal
    mass_incident_triggered: bool = False
    mass_incident_id: str | None = None
    clustering: ClusteringStatus = ClusteringStatus.COMPLETED


# ---------------------------------------------------------------------------
# Payload routing
# ---------------------------------------------------------------------------


def parse_geo_payload(payload: Mapping[str, Any]) -> GeoSignalPayload:
    """Validate *payload* as a geo signal.

    Only the coordinate decides whether a payload is a geo signal.  Any
    other field that fails validation (an unknown severity, a negative
    accuracy, ...) is dropped back to its default.

    Raises
    ------
    SignalValidationError
        If latitude / longitude are missing, non-finite or out of range.
    """
    if payload.get("latitude") is None or payload.get("longitude") is None:
        raise SignalValidationError("latitude and longitude are required")
    try:
        return GeoSignalPayload.model_validate(payload)
    except ValidationError as exc:
        invalid = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        unusable = sorted(invalid & _COORDINATE_FIELDS)
        if unusable or not invalid:
            raise SignalValidationError(f"invalid fields: {', '.join(unusable) or 'payload'}") from exc

        logger.info("detection.payload_fields_defaulted", fields=sorted(invalid))
        return GeoSignalPayload.model_validate({k: v for k, v in payload.items() if k not in invalid})


def parse_legacy_payload(payload: Mapping[str, Any]) -> LegacyTextPayload:
    try:
        return LegacyTextPayload.model_validate(payload)
    except ValidationError as exc:
        raise SignalValidationError("payload is neither a geo signal nor a text report") from exc


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class DetectionPipeline:
    """Orchestrates one SOS signal from payload to incident decision.

    Parameters
    ----------
    signals:
        Durable signal store (step 4).
    index:
        Proximity index (step 5).
    tracker:
        Incident tracker (step 6); also supplies the trigger radius.
    profiles:
        Reporter profile directory for the snapshot (step 3).
    window:
        Look-back window for the cluster query.
    timeout_seconds:
        Upper bound for steps 5-6 together.
    clock:
        Source of "now"; the capture time of every signal.
    """

    __slots__ = ("_clock", "_index", "_profiles", "_signals", "_timeout", "_tracker", "_window")

    def __init__(
        self,
        *,
        signals: SignalStore,
        index: ProximityIndex,
        tracker: IncidentTracker,
        profiles: ProfileDirectory | None = None,
        window: timedelta = timedelta(minutes=10),
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._signals = signals
        self._index = index
        self._tracker = tracker
        self._profiles = profiles
        self._window = window
        self._timeout = timeout_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_reporter(reporter: Reporter | None) -> Reporter:
        if reporter is None or not reporter.reporter_id:
            raise Unauthenticated("No reporter identity on request")
        return reporter

    async def _fetch_profile(self, reporter: Reporter) -> ReporterProfile | None:
        """Profile lookup never fails the request; problems mean an empty profile."""
        if self._profiles is None:
            return None
        try:
            return await self._profiles.fetch(reporter.reporter_id)
        except Exception:
            logger.warning("detection.profile_lookup_failed", reporter_id=reporter.reporter_id, exc_info=True)
            return None

    async def _cluster(self, signal: GeoSignal, now: datetime) -> TrackerResult:
        cluster = await self._index.query(
            GeoPoint(signal.latitude, signal.longitude),
            self._tracker.radius_m,
            now - self._window,
            now,
        )
        return await self._tracker.observe(signal, cluster, now)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, payload: Mapping[str, Any], reporter: Reporter | None) -> DetectionOutcome:
        """Run the full pipeline for one payload.

        Raises
        ------
        Unauthenticated
            If *reporter* is missing; checked before the payload is read.
        SignalValidationError
            If the payload fits neither signal variant.
        PersistenceError
            If the signal could not be recorded.
        InvalidQuery
            If the proximity query was malformed (a bug, not a runtime condition).
        """
        reporter = self._require_reporter(reporter)

        try:
            geo = parse_geo_payload(payload)
        except SignalValidationError as exc:
            logger.info("detection.geo_payload_rejected", reason=str(exc))
            return await self._ingest_legacy(payload, reporter, reason=str(exc))

        profile = await self._fetch_profile(reporter)
        now = self._clock()

        signal = GeoSignal(
            reporter_id=reporter.reporter_id,
            submitted_by_role=reporter.role,
            latitude=geo.latitude,
            longitude=geo.longitude,
            captured_at=now,
            accuracy_meters=geo.accuracy_meters,
            notes=geo.notes,
            source=geo.source,
            severity=geo.severity,
            snapshot=build_snapshot(profile, geo),
        )
        log = logger.bind(signal_id=signal.signal_id, reporter_id=reporter.reporter_id)

        await self._signals.persist(signal)

        try:
            async with asyncio.timeout(self._timeout):
                result = await self._cluster(signal, now)
        except TimeoutError:
            log.error("detection.clustering_timeout", timeout_seconds=self._timeout)
            return DetectionOutcome(signal=signal, clustering=ClusteringStatus.UNAVAILABLE)
        except DependencyUnavailable:
            log.error("detection.clustering_unavailable", exc_info=True)
            return DetectionOutcome(signal=signal, clustering=ClusteringStatus.UNAVAILABLE)

        incident = result.incident
        if result.triggered and incident is not None:
            log.warning(
                "detection.mass_incident",
                incident_id=incident.incident_id,
                action=result.action,
                member_count=incident.member_count,
            )
        else:
            log.info("detection.isolated_signal", cluster_size=result.cluster_size)

        return DetectionOutcome(
            signal=signal,
            mass_incident_triggered=result.triggered,
            mass_incident_id=incident.incident_id if incident is not None else None,
            clustering=ClusteringStatus.COMPLETED,
        )

    async def _ingest_legacy(
        self,
        payload: Mapping[str, Any],
        reporter: Reporter,
        *,
        reason: str,
    ) -> DetectionOutcome:
        """Record a free-text report; it never takes part in clustering."""
        legacy = parse_legacy_payload(payload)

        mobile = legacy.mobile
        if not mobile and reporter.role == ReporterRole.PATIENT:
            profile = await self._fetch_profile(reporter)
            mobile = profile.mobile if profile is not None else ""

        signal = LegacyTextSignal(
            reporter_id=reporter.reporter_id,
            submitted_by_role=reporter.role,
            profile_id=legacy.profile_id,
            name=legacy.name,
            age=legacy.age,
            mobile=mobile,
            location=legacy.location,
            captured_at=self._clock(),
            fallback_reason=reason,
        )
        await self._signals.persist(signal)

        logger.info("detection.legacy_signal_recorded", signal_id=signal.signal_id, reporter_id=reporter.reporter_id)
        return DetectionOutcome(signal=signal, clustering=ClusteringStatus.NOT_APPLICABLE)

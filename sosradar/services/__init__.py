"""SOSRadar service layer -- storage, proximity queries, incident tracking, detection."""

from __future__ import annotations

from sosradar.services.detection import DetectionOutcome, DetectionPipeline, Reporter
from sosradar.services.errors import (
    DependencyUnavailable,
    IncidentNotFound,
    InvalidQuery,
    PersistenceError,
    SignalNotFound,
    SignalValidationError,
    SOSRadarError,
    StoreError,
    Unauthenticated,
)
from sosradar.services.geo import GeoPoint, haversine_distance
from sosradar.services.incident_store import IncidentStore
from sosradar.services.incident_tracker import IncidentTracker, TrackerAction, TrackerResult
from sosradar.services.profiles import ProfileDirectory, ReporterProfile
from sosradar.services.proximity import ProximityIndex
from sosradar.services.signal_store import SignalStore
from sosradar.services.store import InMemoryStoreBackend, RecordStore, RedisStoreBackend

__all__ = [
    "DependencyUnavailable",
    "DetectionOutcome",
    "DetectionPipeline",
    "GeoPoint",
    "InMemoryStoreBackend",
    "IncidentNotFound",
    "IncidentStore",
    "IncidentTracker",
    "InvalidQuery",
    "PersistenceError",
    "ProfileDirectory",
    "ProximityIndex",
    "RecordStore",
    "RedisStoreBackend",
    "Reporter",
    "ReporterProfile",
    "SOSRadarError",
    "SignalNotFound",
    "SignalStore",
    "SignalValidationError",
    "StoreError",
    "TrackerAction",
    "TrackerResult",
    "Unauthenticated",
    "haversine_distance",
]

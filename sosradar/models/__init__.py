from sosradar.models.enums import (
    ClusteringStatus,
    IncidentStatus,
    ReporterRole,
    Severity,
    SignalKind,
    SignalSource,
)
from sosradar.models.incident import DEFAULT_INCIDENT_LABEL, Incident
from sosradar.models.signal import (
    GeoSignal,
    GeoSignalPayload,
    LegacyTextPayload,
    LegacyTextSignal,
    ReporterSnapshot,
    SignalRecord,
    signal_record_adapter,
)

__all__ = [
    "ClusteringStatus",
    "DEFAULT_INCIDENT_LABEL",
    "GeoSignal",
    "GeoSignalPayload",
    "Incident",
    "IncidentStatus",
    "LegacyTextPayload",
    "LegacyTextSignal",
    "ReporterRole",
    "ReporterSnapshot",
    "Severity",
    "SignalKind",
    "SignalRecord",
    "SignalSource",
    "signal_record_adapter",
]

from __future__ import annotations

from enum import StrEnum


class SignalKind(StrEnum):
    __slots__ = ()

    GEO = "geo"
    LEGACY_TEXT = "legacy_text"


class SignalSource(StrEnum):
    __slots__ = ()

    PATIENT_APP = "patient_app"
    DOCTOR_APP = "doctor_app"
    VOLUNTEER = "volunteer"
    OTHER = "other"


class Severity(StrEnum):
    __slots__ = ()

    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class ReporterRole(StrEnum):
    __slots__ = ()

    PATIENT = "patient"
    DOCTOR = "doctor"
    ANONYMOUS = "anonymous"


class IncidentStatus(StrEnum):
    __slots__ = ()

    ACTIVE = "active"
    RESOLVED = "resolved"


class ClusteringStatus(StrEnum):
    """How far the clustering stage got for one ingested signal."""

    __slots__ = ()

    COMPLETED = "completed"
    UNAVAILABLE = "unavailable"
    NOT_APPLICABLE = "not_applicable"

"""SOS signal models.

An incoming payload is routed to exactly one of two variants:

* :class:`GeoSignalPayload` -- carries a finite, in-range coordinate and
  takes part in mass-incident clustering.
* :class:`LegacyTextPayload` -- the free-text location report older
  clients still send.  Stored for responders, never clustered.

Persisted records mirror that split (:class:`GeoSignal` and
:class:`LegacyTextSignal`) and share a ``kind`` discriminator so the
store can round-trip either through :data:`signal_record_adapter`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from sosradar.models.enums import ReporterRole, Severity, SignalSource

NOTES_MAX_LENGTH = 2000


def _to_text(value: Any) -> Any:
    """Accept numbers where clients send them for text fields (age, mobile)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# Ingestion payloads
# ---------------------------------------------------------------------------


class GeoSignalPayload(BaseModel):
    """An SOS payload with a usable coordinate."""

    model_config = ConfigDict(extra="ignore")

    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)
    accuracy_meters: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    notes: str | None = Field(default=None, max_length=NOTES_MAX_LENGTH)
    source: SignalSource = SignalSource.PATIENT_APP
    severity: Severity = Severity.RED

    # Explicit overrides for the reporter snapshot; these win over the profile.
    name: str | None = None
    mobile: str | None = None
    age: str | None = None
    allergies: str | None = None

    @field_validator("mobile", "age", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _to_text(value)

    @field_validator("notes", mode="before")
    @classmethod
    def truncate_notes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value[:NOTES_MAX_LENGTH]
        return value


class LegacyTextPayload(BaseModel):
    """Free-text SOS report without coordinates."""

    model_config = ConfigDict(extra="ignore")

    profile_id: str = ""
    name: str = ""
    age: str = ""
    mobile: str = ""
    location: str = ""

    @field_validator("profile_id", "name", "age", "mobile", "location", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return "" if value is None else _to_text(value)


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class ReporterSnapshot(BaseModel):
    """Reporter details captured at signal time and never re-fetched."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    mobile: str = ""
    age: str = ""
    allergies: str = ""


class GeoSignal(BaseModel):
    """A persisted SOS signal with a coordinate.

    The observed content (point, capture time, snapshot, notes) is never
    rewritten; only the ``is_read`` triage flag changes, via a copy.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["geo"] = "geo"
    signal_id: str = Field(default_factory=lambda: uuid4().hex)
    reporter_id: str
    submitted_by_role: ReporterRole = ReporterRole.PATIENT
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy_meters: float | None = None
    notes: str | None = None
    source: SignalSource = SignalSource.PATIENT_APP
    severity: Severity = Severity.RED
    snapshot: ReporterSnapshot = Field(default_factory=ReporterSnapshot)
    is_read: bool = False


class LegacyTextSignal(BaseModel):
    """A persisted free-text SOS report."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["legacy_text"] = "legacy_text"
    signal_id: str = Field(default_factory=lambda: uuid4().hex)
    reporter_id: str
    submitted_by_role: ReporterRole = ReporterRole.PATIENT
    profile_id: str = ""
    name: str = ""
    age: str = ""
    mobile: str = ""
    location: str = ""
    captured_at: datetime
    fallback_reason: str = ""
    is_read: bool = False


SignalRecord = Annotated[GeoSignal | LegacyTextSignal, Field(discriminator="kind")]

signal_record_adapter: TypeAdapter[GeoSignal | LegacyTextSignal] = TypeAdapter(SignalRecord)

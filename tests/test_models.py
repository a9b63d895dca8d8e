"""Tests for the signal and incident Pydantic models."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from sosradar.models import (
    DEFAULT_INCIDENT_LABEL,
    GeoSignal,
    GeoSignalPayload,
    Incident,
    IncidentStatus,
    LegacyTextPayload,
    LegacyTextSignal,
    Severity,
    SignalKind,
    SignalSource,
    signal_record_adapter,
)
from sosradar.models.signal import NOTES_MAX_LENGTH

T0 = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


class TestGeoSignalPayload:
    def test_minimal_payload(self) -> None:
        payload = GeoSignalPayload.model_validate({"latitude": 12.9716, "longitude": 77.5946})
        assert payload.source == SignalSource.PATIENT_APP
        assert payload.severity == Severity.RED
        assert payload.name is None, "absent override fields stay None so the profile value is used"

    def test_string_coordinates_are_coerced(self) -> None:
        payload = GeoSignalPayload.model_validate({"latitude": "12.5", "longitude": "77.25"})
        assert payload.latitude == 12.5
        assert payload.longitude == 77.25

    @pytest.mark.parametrize(
        "coords",
        [
            {"latitude": 90.5, "longitude": 0.0},
            {"latitude": 0.0, "longitude": 181.0},
            {"latitude": math.nan, "longitude": 0.0},
            {"latitude": 0.0, "longitude": math.inf},
            {"latitude": "north", "longitude": 0.0},
        ],
    )
    def test_rejects_unusable_coordinates(self, coords: dict) -> None:
        with pytest.raises(ValidationError):
            GeoSignalPayload.model_validate(coords)

    def test_numeric_mobile_and_age_become_text(self) -> None:
        payload = GeoSignalPayload.model_validate(
            {"latitude": 1.0, "longitude": 2.0, "mobile": 9876543210, "age": 42}
        )
        assert payload.mobile == "9876543210"
        assert payload.age == "42"

    def test_long_notes_are_truncated(self) -> None:
        payload = GeoSignalPayload.model_validate({"latitude": 1.0, "longitude": 2.0, "notes": "n" * 2001})
        assert len(payload.notes) == NOTES_MAX_LENGTH

    def test_unknown_fields_are_ignored(self) -> None:
        payload = GeoSignalPayload.model_validate({"latitude": 1.0, "longitude": 2.0, "battery": 12})
        assert not hasattr(payload, "battery")


class TestLegacyTextPayload:
    def test_missing_and_null_fields_become_empty(self) -> None:
        payload = LegacyTextPayload.model_validate({"name": None, "location": "Gate 3"})
        assert payload.name == ""
        assert payload.mobile == ""
        assert payload.location == "Gate 3"

    def test_numeric_age(self) -> None:
        assert LegacyTextPayload.model_validate({"age": 67}).age == "67"


class TestSignalRecords:
    def test_geo_signal_is_immutable(self) -> None:
        signal = GeoSignal(reporter_id="r1", latitude=1.0, longitude=2.0, captured_at=T0)
        with pytest.raises(ValidationError):
            signal.latitude = 3.0

    def test_adapter_dispatches_on_kind(self) -> None:
        geo = GeoSignal(reporter_id="r1", latitude=1.0, longitude=2.0, captured_at=T0)
        legacy = LegacyTextSignal(reporter_id="r2", location="Platform 4", captured_at=T0)

        restored_geo = signal_record_adapter.validate_python(geo.model_dump(mode="json"))
        restored_legacy = signal_record_adapter.validate_python(legacy.model_dump(mode="json"))

        assert isinstance(restored_geo, GeoSignal)
        assert restored_geo.kind == SignalKind.GEO
        assert restored_legacy.kind == SignalKind.LEGACY_TEXT
        assert isinstance(restored_legacy, LegacyTextSignal)
        assert restored_geo == geo
        assert restored_legacy.location == "Platform 4"

    def test_unique_ids(self) -> None:
        a = GeoSignal(reporter_id="r1", latitude=1.0, longitude=2.0, captured_at=T0)
        b = GeoSignal(reporter_id="r1", latitude=1.0, longitude=2.0, captured_at=T0)
        assert a.signal_id != b.signal_id


class TestIncident:
    def _incident(self, **overrides) -> Incident:
        fields = dict(
            centroid_latitude=12.9716,
            centroid_longitude=77.5946,
            radius_meters=15.0,
            member_count=8,
            first_signal_at=T0,
            last_signal_at=T0 + timedelta(minutes=2),
            created_at=T0 + timedelta(minutes=2),
            updated_at=T0 + timedelta(minutes=2),
        )
        fields.update(overrides)
        return Incident(**fields)

    def test_defaults(self) -> None:
        incident = self._incident()
        assert incident.status == IncidentStatus.ACTIVE
        assert incident.is_active is True
        assert incident.label == DEFAULT_INCIDENT_LABEL
        assert incident.created_by == "system"
        assert incident.resolved_at is None

    def test_last_signal_before_first_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            self._incident(last_signal_at=T0 - timedelta(seconds=1))

    def test_negative_member_count_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            self._incident(member_count=-1)

    def test_resolved_is_not_active(self) -> None:
        assert self._incident(status=IncidentStatus.RESOLVED).is_active is False

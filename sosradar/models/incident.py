"""Mass incident aggregate.

An incident is born when a spatial-temporal cluster of SOS signals first
crosses the trigger threshold.  Its centroid is the point of the signal
that tipped it over and is never recomputed; only ``member_count`` and
``last_signal_at`` move as further signals join.  Incidents are never
deleted -- operators resolve them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Self
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from sosradar.models.enums import IncidentStatus

DEFAULT_INCIDENT_LABEL = "Possible mass SOS / crowd incident"


class Incident(BaseModel):
    """A detected mass SOS / crowd emergency."""

    incident_id: str = Field(default_factory=lambda: uuid4().hex)
    centroid_latitude: float = Field(ge=-90.0, le=90.0)
    centroid_longitude: float = Field(ge=-180.0, le=180.0)
    radius_meters: float = Field(gt=0)
    member_count: int = Field(ge=0)
    first_signal_at: datetime
    last_signal_at: datetime
    status: IncidentStatus = IncidentStatus.ACTIVE
    label: str = DEFAULT_INCIDENT_LABEL
    created_by: str = "system"
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @model_validator(mode="after")
    def check_time_order(self) -> Self:
        if self.last_signal_at < self.first_signal_at:
            raise ValueError("last_signal_at must not precede first_signal_at")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == IncidentStatus.ACTIVE

"""Reporter profile lookup and signal-time snapshotting.

Profiles are owned by the account system; this module only reads them.
Whatever a profile holds at signal time is copied into the signal and
never fetched again, so later profile edits do not rewrite history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog

from sosradar.models.signal import GeoSignalPayload, ReporterSnapshot
from sosradar.services.store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class ReporterProfile:
    """The subset of a reporter's profile relevant to an emergency."""

    reporter_id: str
    name: str = ""
    mobile: str = ""
    age: str = ""
    date_of_birth: date | None = None
    allergies: str = ""

    @classmethod
    def from_document(cls, reporter_id: str, document: dict[str, Any]) -> ReporterProfile:
        """Read a stored profile; an unreadable field never discards the others."""
        age = document.get("age")
        return cls(
            reporter_id=reporter_id,
            name=str(document.get("name") or ""),
            mobile=str(document.get("mobile") or ""),
            age="" if age is None else str(age),
            date_of_birth=_parse_date(
                reporter_id, document.get("date_of_birth") or document.get("dateOfBirth"),
            ),
            allergies=str(document.get("allergies") or ""),
        )


def _parse_date(reporter_id: str, value: Any) -> date | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.warning("profiles.date_of_birth_unreadable", reporter_id=reporter_id)
        return None


class ProfileDirectory:
    """Read-only reporter profile lookup backed by the ``profile:`` namespace."""

    __slots__ = ("_records",)

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def fetch(self, reporter_id: str) -> ReporterProfile | None:
        document = await self._records.get(reporter_id)
        if not isinstance(document, dict):
            return None
        return ReporterProfile.from_document(reporter_id, document)

    async def upsert(self, profile: ReporterProfile) -> None:
        """Write a profile document (used by seeding and tests)."""
        await self._records.put(
            profile.reporter_id,
            {
                "name": profile.name,
                "mobile": profile.mobile,
                "age": profile.age,
                "date_of_birth": profile.date_of_birth.isoformat() if profile.date_of_birth else None,
                "allergies": profile.allergies,
            },
        )


def build_snapshot(profile: ReporterProfile | None, payload: GeoSignalPayload) -> ReporterSnapshot:
    """Merge payload overrides over the stored profile.

    A value present in the payload (even an empty string) wins; anything
    missing on both sides becomes an empty string.
    """

    def pick(override: str | None, stored: str) -> str:
        return override if override is not None else stored

    if profile is None:
        profile = ReporterProfile(reporter_id="")

    return ReporterSnapshot(
        name=pick(payload.name, profile.name),
        mobile=pick(payload.mobile, profile.mobile),
        age=pick(payload.age, profile.age),
        allergies=pick(payload.allergies, profile.allergies),
    )

"""Persistence for mass incident aggregates."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Final

import structlog

from sosradar.models.enums import IncidentStatus
from sosradar.models.incident import Incident
from sosradar.services.store import RecordStore

logger = structlog.get_logger(__name__)

# Ids of active incidents, scored by creation time.
ACTIVE_INDEX: Final[str] = "active"


class IncidentStore:
    """Incident documents over a :class:`RecordStore` namespace.

    Only the :class:`~sosradar.services.incident_tracker.IncidentTracker`
    writes through this class.  Backend errors propagate as
    :class:`~sosradar.services.errors.StoreError`.
    """

    __slots__ = ("_records",)

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def get(self, incident_id: str) -> Incident | None:
        document = await self._records.get(incident_id)
        if document is None:
            return None
        return Incident.model_validate(document)

    async def save(self, incident: Incident) -> None:
        await self._records.put(incident.incident_id, incident.model_dump(mode="json"))
        if incident.is_active:
            await self._records.index_add(ACTIVE_INDEX, incident.incident_id, incident.created_at.timestamp())
        else:
            await self._records.index_remove(ACTIVE_INDEX, incident.incident_id)

    async def list_incidents(self, status: IncidentStatus | None = None) -> list[Incident]:
        """Return incidents, optionally filtered by *status*, oldest first."""
        if status == IncidentStatus.ACTIVE:
            return await self.list_active()
        incidents = [Incident.model_validate(doc) for doc in await self._records.all()]
        if status is not None:
            incidents = [i for i in incidents if i.status == status]
        incidents.sort(key=lambda i: (i.created_at, i.incident_id))
        return incidents

    async def list_active(self) -> list[Incident]:
        """Return active incidents via the active index, oldest first."""
        incident_ids = await self._records.index_range(ACTIVE_INDEX)
        incidents = [Incident.model_validate(doc) for doc in await self._records.get_many(incident_ids)]
        incidents = [i for i in incidents if i.is_active]
        incidents.sort(key=lambda i: (i.created_at, i.incident_id))
        return incidents

    def band_lock(self, band: int) -> AbstractAsyncContextManager[None]:
        """Lock guarding incident decisions in latitude band *band*."""
        return self._records.lock(f"band:{band}")

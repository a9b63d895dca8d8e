"""Mass incident API endpoints.

Read access to detected incidents for responder dashboards, and the
operator action that closes one.  Incidents are never deleted.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from sosradar.middleware.auth import require_admin_api_key
from sosradar.models.enums import IncidentStatus
from sosradar.services.errors import DependencyUnavailable, IncidentNotFound
from sosradar.services.incident_tracker import IncidentTracker

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/incidents", tags=["incidents"])


class ResolveIncidentRequest(BaseModel):
    resolved_by: str = Field(default="operator", min_length=1, max_length=200)


def _tracker(request: Request) -> IncidentTracker:
    tracker = getattr(request.app.state, "incident_tracker", None)
    if tracker is None:
        raise HTTPException(status_code=503, detail="Incident tracker not available")
    return tracker


@router.get("")
async def list_incidents(request: Request, status: IncidentStatus | None = None) -> dict:
    """List incidents oldest first, optionally only ``active`` or ``resolved``."""
    tracker = _tracker(request)
    try:
        incidents = await tracker.list_incidents(status)
    except DependencyUnavailable:
        logger.error("api.incidents.list_failed", exc_info=True)
        raise HTTPException(status_code=503, detail="Incident store unavailable") from None

    return {
        "data": [i.model_dump(mode="json") for i in incidents],
        "count": len(incidents),
    }


@router.get("/{incident_id}")
async def get_incident(incident_id: str, request: Request) -> dict:
    tracker = _tracker(request)
    try:
        incident = await tracker.get(incident_id)
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Incident not found") from None
    except DependencyUnavailable:
        raise HTTPException(status_code=503, detail="Incident store unavailable") from None

    return {"data": incident.model_dump(mode="json")}


@router.post("/{incident_id}/resolve", dependencies=[Depends(require_admin_api_key)])
async def resolve_incident(
    incident_id: str,
    request: Request,
    body: ResolveIncidentRequest | None = None,
) -> dict:
    """Close an incident after responders confirm the situation is handled."""
    tracker = _tracker(request)
    resolved_by = body.resolved_by if body is not None else "operator"
    try:
        incident = await tracker.resolve(incident_id, resolved_by)
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Incident not found") from None
    except DependencyUnavailable:
        logger.error("api.incidents.resolve_failed", incident_id=incident_id, exc_info=True)
        raise HTTPException(status_code=503, detail="Incident store unavailable") from None

    return {"success": True, "data": incident.model_dump(mode="json")}

"""SOS signal API endpoints.

Reporters post signals here; responders list, acknowledge and clear
them.  Ingestion runs the full detection pipeline and tells the caller
whether the signal tipped (or joined) a mass incident.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from sosradar.middleware.auth import require_admin_api_key, resolve_reporter
from sosradar.models.enums import ClusteringStatus
from sosradar.services.detection import DetectionOutcome, DetectionPipeline, Reporter
from sosradar.services.errors import (
    InvalidQuery,
    PersistenceError,
    SignalNotFound,
    SignalValidationError,
    StoreError,
    Unauthenticated,
)
from sosradar.services.signal_store import SignalStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sos", tags=["sos"])


class MarkReadRequest(BaseModel):
    ids: list[str] = Field(default_factory=list, description="Signal ids to acknowledge")


def _pipeline(request: Request) -> DetectionPipeline:
    pipeline = getattr(request.app.state, "detection", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="SOS detection service not available")
    return pipeline


def _signal_store(request: Request) -> SignalStore:
    store = getattr(request.app.state, "signal_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="SOS store not available")
    return store


def _outcome_to_dict(outcome: DetectionOutcome) -> dict[str, Any]:
    return {
        "signal": outcome.signal.model_dump(mode="json"),
        "mass_incident_triggered": outcome.mass_incident_triggered,
        "mass_incident_id": outcome.mass_incident_id,
        "clustering": outcome.clustering,
        "partial": outcome.clustering == ClusteringStatus.UNAVAILABLE,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_sos(
    request: Request,
    payload: dict[str, Any] = Body(...),
    reporter: Reporter | None = Depends(resolve_reporter),
) -> dict:
    """Record an SOS signal and run mass-incident detection.

    A payload with ``latitude``/``longitude`` is clustered; one without
    is stored as a free-text location report.  The signal is saved even
    when clustering is unavailable -- ``partial`` is then *true*.
    """
    pipeline = _pipeline(request)

    try:
        outcome = await pipeline.ingest(payload, reporter)
    except Unauthenticated:
        raise HTTPException(
            status_code=401,
            detail="Access denied. No valid token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except SignalValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    except PersistenceError:
        logger.error("api.sos.create_failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create SOS") from None
    except InvalidQuery:
        logger.error("api.sos.invalid_proximity_query", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create SOS") from None

    return {"success": True, "data": _outcome_to_dict(outcome)}


@router.get("", dependencies=[Depends(require_admin_api_key)])
async def list_sos(
    request: Request,
    unread: bool = Query(default=False, description="Only signals not yet marked read"),
    skip: int = Query(default=0),
    limit: int = Query(default=100, description="Page size, capped at 500"),
) -> dict:
    """List SOS signals oldest first."""
    store = _signal_store(request)
    try:
        signals = await store.list_signals(unread_only=unread, skip=skip, limit=limit)
    except StoreError:
        logger.error("api.sos.list_failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch SOS") from None

    return {
        "success": True,
        "data": [s.model_dump(mode="json") for s in signals],
        "count": len(signals),
    }


@router.post("/mark-read", dependencies=[Depends(require_admin_api_key)])
async def mark_sos_read(body: MarkReadRequest, request: Request) -> dict:
    """Acknowledge a batch of signals."""
    if not body.ids:
        raise HTTPException(status_code=400, detail="ids array is required")

    store = _signal_store(request)
    try:
        updated = await store.mark_read(set(body.ids))
    except StoreError:
        logger.error("api.sos.mark_read_failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to mark as read") from None

    return {"success": True, "updated": updated}


@router.delete("/{signal_id}", dependencies=[Depends(require_admin_api_key)])
async def delete_sos(signal_id: str, request: Request) -> dict:
    """Clear one signal record."""
    store = _signal_store(request)
    try:
        await store.delete(signal_id)
    except SignalNotFound:
        raise HTTPException(status_code=404, detail="Not found") from None
    except StoreError:
        logger.error("api.sos.delete_failed", signal_id=signal_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete") from None

    return {"success": True}

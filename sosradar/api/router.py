"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * SOS: signal ingestion with mass-incident detection, triage list
    * Incidents: active / resolved mass incidents, operator resolve
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from sosradar.api.v1 import health, incidents, sos

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(sos.router)
api_router.include_router(incidents.router)
api_router.include_router(health.router)

"""Health check endpoints for SOSRadar API v1.

Provides liveness and readiness probes for container orchestrators.
The readiness check verifies the record store round-trips and that the
detection pipeline was wired up.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 if the application process is running and able to
    handle requests.  Does *not* check downstream dependencies.
    """
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    Verifies the record store is reachable and the detection pipeline is
    initialised so the load balancer only routes SOS traffic to
    instances that can record it.
    """
    checks: dict[str, str] = {}
    all_ok = True

    # -- Check record store ------------------------------------------------
    store = getattr(request.app.state, "record_store", None)
    if store is not None:
        if await store.ping():
            checks["store"] = "ok"
        else:
            checks["store"] = "unreachable"
            all_ok = False
    else:
        checks["store"] = "not_configured"
        all_ok = False

    # -- Check detection pipeline ------------------------------------------
    if getattr(request.app.state, "detection", None) is not None:
        checks["detection"] = "ok"
    else:
        checks["detection"] = "not_initialised"
        all_ok = False

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)

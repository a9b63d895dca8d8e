"""SOSRadar FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the backend services (record store, signal
store, proximity index, incident tracker, detection pipeline).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.settings import Settings, settings
from sosradar.api.router import api_router
from sosradar.services.detection import DetectionPipeline
from sosradar.services.incident_store import IncidentStore
from sosradar.services.incident_tracker import IncidentTracker
from sosradar.services.profiles import ProfileDirectory
from sosradar.services.proximity import ProximityIndex
from sosradar.services.signal_store import SignalStore
from sosradar.services.store import RecordStore, StoreBackend, close_backend, open_backend

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.stdlib.NAME_TO_LEVEL[settings.log_level.lower()],
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, backend: StoreBackend, config: Settings = settings) -> None:
    """Build the service graph over *backend* and store it on ``app.state``."""
    records = RecordStore(backend)

    signal_store = SignalStore(
        records.for_namespace("signal:"),
        default_limit=config.list_default_limit,
        max_limit=config.list_max_limit,
    )
    incident_tracker = IncidentTracker(
        IncidentStore(records.for_namespace("incident:")),
        threshold=config.mass_threshold,
        radius_m=config.mass_radius_meters,
    )
    detection = DetectionPipeline(
        signals=signal_store,
        index=ProximityIndex(signal_store),
        tracker=incident_tracker,
        profiles=ProfileDirectory(records.for_namespace("profile:")),
        window=timedelta(minutes=config.mass_window_minutes),
        timeout_seconds=config.dependency_timeout_seconds,
    )

    app.state.record_store = records
    app.state.signal_store = signal_store
    app.state.incident_tracker = incident_tracker
    app.state.detection = detection


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of SOSRadar services.

    On startup:
      1. Select the record store backend (Redis if reachable, else memory)
      2. Wire signal store, proximity index, incident tracker, pipeline
      3. Store everything on ``app.state``

    On shutdown:
      - Close the Redis connection pool, if one was opened.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        mass_threshold=settings.mass_threshold,
        mass_radius_meters=settings.mass_radius_meters,
        mass_window_minutes=settings.mass_window_minutes,
    )

    app.state.start_time = time.time()

    backend = await open_backend(settings.redis_url, lock_timeout=settings.lock_timeout_seconds)
    wire_services(app, backend)
    logger.info("app.startup_complete")

    yield

    logger.info("app.shutdown_start")
    await close_backend(backend)
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SOSRadar API",
    description=(
        "SOSRadar -- SOS signal ingestion with mass-casualty / crowd incident "
        "detection.  Clusters signals in space and time and tracks the "
        "resulting incidents until responders resolve them."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# SECURITY: allow_credentials=True must NOT be combined with allow_origins=["*"]
# (browsers reject that combination).
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-API-Key"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Accept", "Authorization", "X-Admin-API-Key"],
    )

# -- Prometheus metrics -----------------------------------------------------
# In production the endpoint is scraped in-cluster and kept out of the docs.
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
).instrument(app).expose(
    app,
    endpoint="/metrics",
    include_in_schema=not settings.is_production,
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "SOSRadar API",
        "description": "SOS ingestion and mass incident detection",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "detection": {
            "mass_threshold": settings.mass_threshold,
            "mass_radius_meters": settings.mass_radius_meters,
            "mass_window_minutes": settings.mass_window_minutes,
        },
        "endpoints": {
            "sos": "/api/v1/sos",
            "incidents": "/api/v1/incidents",
            "health": "/api/v1/health",
        },
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("sosradar.main:app", host=settings.api_host, port=settings.api_port)

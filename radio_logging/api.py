#!/usr/bin/env python3
"""
REST API for the Radio Logging Commander

FastAPI application exposing the commander's registry, job distribution and
the rows relayed back by targets. Every endpoint except /api/health needs the
local device to be the commander and answers 409 otherwise.

Endpoints:
    GET    /api/health          - Liveness and role
    GET    /api/status          - Coordinator status
    GET    /api/targets         - Poll targets and return the fresh registry
    GET    /api/targets/cached  - Last published registry (no radio traffic)
    POST   /api/targets/watch   - Start refreshing the registry in the background
    DELETE /api/targets/watch   - Stop the background refresh
    POST   /api/jobs            - Send a sensor job to every target
    GET    /api/rows            - Rows received from targets

Usage:
    from radio_logging import Coordinator, CoordinatorConfig
    from radio_logging.api import create_api, run_api_server

    app = create_api(coordinator)
    run_api_server(app, host="0.0.0.0", port=8080)
"""

import logging
from datetime import datetime
from typing import List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError(
        "FastAPI and Pydantic are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from .protocol import INEQUALITIES, RecordingConfig
from .storage import MAX_QUERY_RESULTS


# =============================================================================
# Pydantic Models
# =============================================================================

class HealthResponse(BaseModel):
    """API health check response."""
    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="Current server time")
    role: str = Field(..., description="Coordination role of this device")


class StatusResponse(BaseModel):
    """Coordinator status."""
    role: str = Field(..., description="Coordination role")
    id: int = Field(..., description="Device id (0 for the commander)")
    targets_connected: int = Field(..., ge=0, description="Ids issued since start")
    next_id_to_issue: Optional[int] = Field(None, description="Next id the commander will issue")
    target_ids: List[int] = Field(..., description="Last published target registry")
    polling: bool = Field(..., description="Whether a registry poll is running")
    watching_registry: bool = Field(..., description="Whether the registry watcher is running")
    streaming_done: bool = Field(..., description="Whether targets finished streaming")
    live_view_available: bool = Field(..., description="Whether there are rows to show")
    rows_received: int = Field(..., ge=0, description="Rows relayed since start")
    row_count: int = Field(..., ge=0, description="Rows in the persistent log")


class TargetsResponse(BaseModel):
    """Target registry."""
    total: int = Field(..., ge=0, description="Number of targets")
    target_ids: List[int] = Field(..., description="Target ids, ascending")
    poll_rounds: int = Field(0, ge=0, description="GET_ID rounds used by the last poll")


class SensorJobRequest(BaseModel):
    """One sensor of a job."""
    name: str = Field(..., min_length=1, description="Sensor name (e.g. Temp)")
    measurements: int = Field(..., ge=1, description="Readings (or events) to log")
    period_ms: Optional[int] = Field(None, ge=1, description="Period for periodic recording")
    inequality: Optional[str] = Field(None, description="Event condition operator")
    comparator: Optional[float] = Field(None, description="Event condition threshold")


class JobRequest(BaseModel):
    """Request to distribute a sensor job."""
    sensors: List[SensorJobRequest] = Field(..., min_length=1, description="Sensors in job order")
    stream_back: bool = Field(True, description="Relay logged rows to the commander")


class CommandResponse(BaseModel):
    """Response from a command that sends radio traffic."""
    success: bool = Field(..., description="Whether the command was sent")
    message: str = Field(..., description="Status message")


class RowResponse(BaseModel):
    """One row relayed by a target."""
    id: int
    device_id: int
    sensor: str
    time_ms: str
    reading: str
    event: str
    received_at: int


class RowListResponse(BaseModel):
    """Paged rows."""
    total: int = Field(..., ge=0, description="Rows matching the filter")
    rows: List[RowResponse]


def build_recording_config(sensor: SensorJobRequest) -> RecordingConfig:
    """
    Turn one sensor of a job request into a RecordingConfig.

    Raises:
        ValueError: If the request is neither a valid periodic nor event config.
    """
    if sensor.inequality is not None or sensor.comparator is not None:
        if sensor.inequality not in INEQUALITIES or sensor.comparator is None:
            raise ValueError(f"{sensor.name}: event needs inequality and comparator")
        return RecordingConfig.event(sensor.measurements, sensor.inequality, sensor.comparator)

    if sensor.period_ms is None:
        raise ValueError(f"{sensor.name}: periodic recording needs period_ms")
    return RecordingConfig.periodic(sensor.measurements, sensor.period_ms)


# =============================================================================
# API Factory
# =============================================================================

def create_api(coordinator) -> FastAPI:
    """
    Create a FastAPI application with a coordinator reference.

    Args:
        coordinator: Coordinator instance (normally the commander).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Radio Logging API",
        description="REST API for the commander of a radio logging fleet",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.coordinator = coordinator
    logger = logging.getLogger("API")

    def get_commander():
        """Get the coordinator, failing unless it is the commander."""
        coordinator = app.state.coordinator
        if not coordinator.is_commander:
            raise HTTPException(
                status_code=409,
                detail=f"Device is not the commander (role: {coordinator.role.value})",
            )
        return coordinator

    # -------------------------------------------------------------------------
    # Health & Status
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Check API health."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            role=app.state.coordinator.role.value,
        )

    @app.get("/api/status", response_model=StatusResponse, tags=["Commander"])
    async def get_status():
        """Get coordinator status."""
        stats = get_commander().get_stats()
        return StatusResponse(**{k: stats[k] for k in StatusResponse.model_fields})

    # -------------------------------------------------------------------------
    # Target Registry
    # -------------------------------------------------------------------------

    # Blocking endpoints are plain `def` (run in the threadpool)
    @app.get("/api/targets", response_model=TargetsResponse, tags=["Targets"])
    def poll_targets():
        """Poll targets over the radio and return the fresh registry."""
        coordinator = get_commander()
        target_ids = coordinator.request_target_registry()
        return TargetsResponse(
            total=len(target_ids),
            target_ids=target_ids,
            poll_rounds=coordinator.last_poll_rounds,
        )

    @app.get("/api/targets/cached", response_model=TargetsResponse, tags=["Targets"])
    async def cached_targets():
        """Return the last published registry."""
        coordinator = get_commander()
        target_ids = list(coordinator.target_ids)
        return TargetsResponse(
            total=len(target_ids),
            target_ids=target_ids,
            poll_rounds=coordinator.last_poll_rounds,
        )

    @app.post("/api/targets/watch", response_model=CommandResponse, tags=["Targets"])
    async def start_watch():
        """Start refreshing the registry in the background."""
        success = get_commander().start_registry_watch()
        return CommandResponse(
            success=success,
            message="Registry watch running" if success else "Could not start registry watch",
        )

    @app.delete("/api/targets/watch", response_model=CommandResponse, tags=["Targets"])
    async def stop_watch():
        """Stop the background registry refresh."""
        get_commander().stop_registry_watch()
        return CommandResponse(success=True, message="Registry watch stopped")

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    @app.post("/api/jobs", response_model=CommandResponse, tags=["Jobs"])
    def send_job(request: JobRequest):
        """Send a sensor job to every target."""
        coordinator = get_commander()

        try:
            configs = [build_recording_config(s) for s in request.sensors]
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        names = [s.name for s in request.sensors]
        for name in names:
            if "," in name:
                raise HTTPException(status_code=400, detail=f"Invalid sensor name: {name}")

        logger.info(f"API job request: {', '.join(names)}")
        success = coordinator.request_job(names, configs, request.stream_back)

        return CommandResponse(
            success=success,
            message=f"Job with {len(names)} sensors sent" if success else "Failed to send job",
        )

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    @app.get("/api/rows", response_model=RowListResponse, tags=["Rows"])
    async def get_rows(
        limit: int = Query(100, ge=1, le=MAX_QUERY_RESULTS, description="Maximum rows"),
        offset: int = Query(0, ge=0, description="Rows to skip"),
        device_id: Optional[int] = Query(None, description="Only rows from this device"),
    ):
        """Get rows relayed by targets, oldest first."""
        coordinator = get_commander()
        storage = coordinator.storage
        if storage is None:
            raise HTTPException(status_code=503, detail="No persistent log configured")

        rows = storage.get_rows(limit=limit, offset=offset, device_id=device_id)
        return RowListResponse(
            total=storage.row_count(device_id),
            rows=[RowResponse(**vars(row)) for row in rows],
        )

    return app


# =============================================================================
# Server Runner
# =============================================================================

def run_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
):
    """
    Run the API server (blocking).

    Args:
        app: FastAPI application instance.
        host: Host to bind to.
        port: Port to bind to.
        log_level: Logging level.
    """
    try:
        import uvicorn
    except ImportError:
        raise ImportError("uvicorn is required. Install with: pip3 install uvicorn")

    uvicorn.run(app, host=host, port=port, log_level=log_level)

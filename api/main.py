"""FastAPI status and request-injection interface for the timed RX trigger service.

Single-process: the running TriggerService attaches itself with
attach_service() and the endpoints read from it:
- AcquisitionWorker (state, processed count, clock offset)
- inbound/outbound BlockingQueues (depths, request injection)
- MqttControlChannel (connection state)
- OutcomeStore (pandas DataFrame of processed requests)

Error mapping:
- RequestParseError → 400
- No service attached → 503
"""

import logging
import os
import subprocess
from pathlib import Path
from threading import RLock
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from timed_rx_lib import __version__
from timed_rx_lib.codec import decode_request
from timed_rx_lib.errors import RequestParseError

# =============================================================================
# Environment Configuration
# =============================================================================

EXPORT_DIR = os.getenv("TRX_EXPORT_DIR", ".")

# Version tracking
API_VERSION = __version__
try:
    GIT_COMMIT = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], cwd=Path(__file__).parent.parent, stderr=subprocess.DEVNULL).decode().strip()
except Exception:
    GIT_COMMIT = "unknown"

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_service: Optional[Any] = None  # TriggerService
_lock = RLock()


def attach_service(service: Optional[Any]) -> None:
    """Expose a running TriggerService through the API (None detaches)."""
    global _service
    with _lock:
        _service = service
    if service is not None:
        logger.info("Service attached to status API")


def _require_service() -> Any:
    with _lock:
        if _service is None:
            raise HTTPException(status_code=503, detail="Trigger service not running")
        return _service


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Timed RX Trigger API",
    description="Status and request injection for the MQTT-triggered timed SDR capture service",
    version=API_VERSION
)

# =============================================================================
# Request/Response Models
# =============================================================================

class InjectRequest(BaseModel):
    """Request body for POST /requests."""
    message: str


class InjectResponse(BaseModel):
    """Response for POST /requests."""
    status: str
    start_time: float
    queue_depth: int


class StatusResponse(BaseModel):
    """Response for GET /status."""
    client_id: str
    worker_state: str
    worker_restarts: int
    processed_count: int
    inbound_depth: int
    outbound_depth: int
    last_clock_offset_s: Optional[float]
    sync_count: int
    control_connected: bool
    control_failed: bool
    last_status: Optional[str]


class OutcomeStatsResponse(BaseModel):
    """Response for GET /outcomes/stats."""
    row_count: int
    by_status: dict
    success_rate: float
    first_completed_at: Optional[str]
    last_completed_at: Optional[str]
    total_samples: int


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(RequestParseError)
async def request_parse_error_handler(request: Request, exc: RequestParseError):
    """Map RequestParseError to 400 Bad Request."""
    logger.warning(f"RequestParseError: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# =============================================================================
# Read-Only Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": "Timed RX Trigger API",
        "version": API_VERSION,
        "status": "online",
        "attached": _service is not None
    }


@app.get("/version")
async def version():
    """Version tracking endpoint for debugging and compatibility checks."""
    return {
        "api": API_VERSION,
        "git": GIT_COMMIT,
        "status": "online"
    }


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get current service status.

    Returns worker state, queue depths, processed count, last measured clock
    offset and control channel state.
    """
    service = _require_service()
    worker = service.worker
    clock_sync = service.clock_sync
    last_outcome = worker.last_outcome if worker else None

    return StatusResponse(
        client_id=service.config.client_id,
        worker_state=worker.state.value if worker else "idle",
        worker_restarts=service.worker_restart_count,
        processed_count=worker.processed_count if worker else 0,
        inbound_depth=len(service.inbound),
        outbound_depth=len(service.outbound),
        last_clock_offset_s=clock_sync.last_offset if clock_sync else None,
        sync_count=clock_sync.sync_count if clock_sync else 0,
        control_connected=service.channel.is_connected,
        control_failed=service.channel.failed.is_set(),
        last_status=last_outcome.status.value if last_outcome else None
    )


@app.get("/outcomes")
async def get_outcomes(limit: int = Query(50, ge=1, le=1000)):
    """Get the most recent processed requests (oldest first).

    Args:
        limit: Maximum number of rows (1-1000)

    Returns:
        {"rows": [...]} with list of outcome dicts
    """
    service = _require_service()
    if service.store is None:
        return {"rows": []}

    recent_df = service.store.get_recent(limit=limit)
    # NaN is not valid JSON
    recent_df = recent_df.astype(object).where(recent_df.notna(), None)
    return {"rows": recent_df.to_dict(orient="records")}


@app.get("/outcomes/stats", response_model=OutcomeStatsResponse)
async def get_outcome_stats():
    """Get per-status counts and totals for processed requests."""
    service = _require_service()
    if service.store is None:
        raise HTTPException(status_code=400, detail="No outcome store available")
    return OutcomeStatsResponse(**service.store.get_stats())


@app.get("/outcomes/export/csv")
async def export_outcomes_csv():
    """Export the outcome journal to a CSV file.

    Returns:
        FileResponse with CSV download

    Raises:
        400: If no data available
    """
    service = _require_service()
    store = service.store

    if store is None:
        raise HTTPException(status_code=400, detail="No outcome store available")
    if len(store) == 0:
        raise HTTPException(status_code=400, detail="No data to export")

    logger.info("Exporting outcomes to CSV...")
    csv_path = store.export_csv(str(Path(EXPORT_DIR) / "timed_rx_outcomes.csv"))

    if not csv_path or not Path(csv_path).exists():
        raise HTTPException(status_code=500, detail="Failed to export CSV")

    return FileResponse(
        path=csv_path,
        media_type="text/csv",
        filename=Path(csv_path).name
    )


# =============================================================================
# Request Injection
# =============================================================================

@app.post("/requests", response_model=InjectResponse, status_code=202)
async def inject_request(body: InjectRequest):
    """Queue a trigger message as if it had arrived over MQTT.

    The message is validated first so malformed input is rejected here
    instead of producing an "invalid msg" status on the response topic.

    Raises:
        400: If the message does not parse
        503: If the service is not running
    """
    service = _require_service()
    request = decode_request(body.message)

    service.inbound.push(body.message.strip())
    depth = len(service.inbound)
    logger.info(f"Injected request for t0={request.start_time:.6f} via API (queue depth {depth})")

    return InjectResponse(status="queued", start_time=request.start_time, queue_depth=depth)

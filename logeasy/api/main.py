"""FastAPI backend for the capture core.

Receives lifecycle events and capture messages from the host agent, and serves
records and session summaries to the popup, export and analysis consumers.
The capture service is built once at startup and shared across requests.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ValidationError

from logeasy.capture.correlator import CaptureOutcome
from logeasy.capture.models import CaptureMessage, LifecycleEvent, RequestRecord, SessionSummary
from logeasy.config import get_settings
from logeasy.logs.client import EnvironmentLogs, LogSearchClient, is_log_search_configured
from logeasy.logs.fallback import AllStrategiesFailedError
from logeasy.logs.queries import ENVIRONMENTS, EnvironmentKey, LogQueryPlan, build_log_query_plan
from logeasy.messages import parse_message
from logeasy.observability.metrics import APP_INFO, REQUEST_DURATION, REQUESTS_TOTAL
from logeasy.service import CaptureService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ClearResponse(BaseModel):
    """Response body for DELETE /records."""

    success: bool


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    records: int
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build and restore the capture service at startup, flush on shutdown."""
    APP_INFO.info({"version": "0.1.0"})

    logger.info("Starting capture service...")
    try:
        service = CaptureService.from_settings(get_settings())
        service.start()
        app.state.service = service
        logger.info("Capture service ready with %d records", len(service.store))
    except Exception:
        logger.exception("Failed to start capture service")
        raise

    yield
    service.stop()
    logger.info("Shutting down capture service")


app = FastAPI(title="LogEasy Capture Core", lifespan=lifespan)


def _service(request: Request) -> CaptureService:
    service: CaptureService = request.app.state.service
    return service


def _observe(endpoint: str, start: float, status: str) -> None:
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/events", response_model=RequestRecord | None, response_model_exclude_none=True)
async def record_event(event: LifecycleEvent, request: Request) -> RequestRecord | None:
    """Merge one lifecycle event from the request-observation hooks."""
    start = time.monotonic()
    record = _service(request).record_event(event)
    _observe("/events", start, "success")
    return record


@app.post("/captures", response_model=CaptureOutcome)
async def ingest_capture(message: CaptureMessage, request: Request) -> CaptureOutcome:
    """Correlate a response captured in page context."""
    start = time.monotonic()
    outcome = _service(request).ingest_capture(message)
    _observe("/captures", start, "success")
    return outcome


@app.post("/messages")
async def dispatch_message(request: Request, raw: dict[str, Any] = Body(...)) -> dict[str, Any]:  # noqa: B008
    """Dispatch a runtime message from the popup or content script."""
    start = time.monotonic()
    try:
        message = parse_message(raw)
    except ValidationError as exc:
        _observe("/messages", start, "error")
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc

    result = _service(request).dispatch(message)
    _observe("/messages", start, "success")
    return result


@app.get("/records", response_model=list[RequestRecord], response_model_exclude_none=True)
async def get_all_records(request: Request) -> list[RequestRecord]:
    """Snapshot of every captured request."""
    return list(_service(request).get_all_records())


@app.delete("/records", response_model=ClearResponse)
async def clear_all(request: Request) -> ClearResponse:
    """Drop every captured request."""
    _service(request).clear_all()
    return ClearResponse(success=True)


@app.get("/sessions/{domain}", response_model=SessionSummary, response_model_exclude_none=True)
async def summarize(domain: str, request: Request) -> SessionSummary:
    """Summary of the active session on ``domain``."""
    start = time.monotonic()
    summary = _service(request).summarize(domain)
    if summary is None:
        _observe("/sessions", start, "not_found")
        raise HTTPException(status_code=404, detail=f"No active session for {domain}")
    _observe("/sessions", start, "success")
    return summary


@app.get("/sessions/{domain}/user")
async def user_details(domain: str, request: Request) -> dict[str, Any]:
    """Signed-in user's profile from the session's captured login response."""
    details = _service(request).user_details(domain)
    if details is None:
        raise HTTPException(status_code=404, detail=f"No captured login response for {domain}")
    return details


@app.get("/sessions/{domain}/queries")
async def log_queries(domain: str, request: Request) -> LogQueryPlan:
    """Log search strings for every environment, in fallback order."""
    summary = _service(request).summarize(domain)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No active session for {domain}")
    return build_log_query_plan(summary, viewer_url=get_settings().log_viewer_url)


@app.get("/sessions/{domain}/logs/{environment}")
async def session_logs(domain: str, environment: str, request: Request) -> EnvironmentLogs:
    """Fetch backend logs for the active session, walking the fallback queries."""
    if environment not in ENVIRONMENTS:
        raise HTTPException(status_code=404, detail=f"Unknown environment: {environment}")
    if not is_log_search_configured():
        raise HTTPException(status_code=503, detail="Log search is not configured (LOG_SEARCH_URL is empty)")

    summary = _service(request).summarize(domain)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No active session for {domain}")

    start = time.monotonic()
    env: EnvironmentKey = environment  # type: ignore[assignment]
    try:
        logs = await LogSearchClient.from_settings().search_environment(summary, env)
    except AllStrategiesFailedError as exc:
        _observe("/sessions/logs", start, "error")
        logger.warning("Log search for %s/%s found nothing: %s", domain, environment, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    _observe("/sessions/logs", start, "success")
    return logs


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Report store size and persistence status."""
    service = _service(request)
    components: list[ComponentHealth] = []

    settings = get_settings()
    if settings.storage_db_path:
        components.append(ComponentHealth(name="snapshot_store", status="healthy", detail="sqlite"))
    else:
        components.append(
            ComponentHealth(name="snapshot_store", status="degraded", detail="in-memory only (STORAGE_DB_PATH empty)")
        )

    if is_log_search_configured():
        components.append(ComponentHealth(name="log_search", status="healthy"))

    overall = "healthy" if all(c.status == "healthy" for c in components) else "degraded"
    return HealthResponse(status=overall, records=len(service.store), components=components)

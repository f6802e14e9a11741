"""Pydantic models for captured requests, their inputs, and derived session summaries.

All models serialize with camelCase keys (``requestId``, ``startTime``, ...) so the
persisted snapshot and the HTTP API share one wire format. Python code uses the
snake_case field names.
"""

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# URL substring that identifies the login call
DEFAULT_LOGIN_MARKER = "logonUser?"


class CamelModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict with camelCase keys and no null fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class HttpHeader(CamelModel):
    """A single header as reported by the request-observation hooks."""

    name: str
    value: str | None = None


# ---------------------------------------------------------------------------
# Request records
# ---------------------------------------------------------------------------


class RequestState(StrEnum):
    STARTED = "started"
    HEADERS_SENT = "headers_sent"
    HEADERS_RECEIVED = "headers_received"
    COMPLETED = "completed"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({RequestState.COMPLETED, RequestState.ERRORED})


class RequestRecord(CamelModel):
    """One observed network request, merged from every phase that mentioned it."""

    request_id: str
    url: str = ""
    method: str | None = None
    start_time: float = 0.0  # epoch ms, set once at first observation
    end_time: float | None = None  # epoch ms, set once by the first terminal event
    post_data: str | None = None

    request_headers: list[HttpHeader] | None = None
    response_headers: list[HttpHeader] | None = None
    correlation_token: str | None = None
    workstation_id: str | None = None
    utc_offset: str | None = None
    route_id: str | None = None

    status_code: int | None = None
    status_text: str | None = None
    response_size: int | None = None
    mime_type: str | None = None
    error: str | None = None

    response_body: str | None = None
    captured_response_headers: dict[str, str] | None = None
    captured_at: float | None = None
    page_url: str | None = None
    is_synthetic: bool = False
    is_login_request: bool = False

    @property
    def state(self) -> RequestState:
        """Position in the primary lifecycle, derived from which fields are set."""
        if self.error is not None and self.end_time is not None:
            return RequestState.ERRORED
        if self.end_time is not None:
            return RequestState.COMPLETED
        if self.response_headers is not None:
            return RequestState.HEADERS_RECEIVED
        if self.request_headers is not None:
            return RequestState.HEADERS_SENT
        return RequestState.STARTED

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def response_captured(self) -> bool:
        """Overlay flag: an out-of-band capture has been merged into this record."""
        return self.captured_at is not None


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class LifecyclePhase(StrEnum):
    BEFORE_REQUEST = "before_request"
    BEFORE_SEND_HEADERS = "before_send_headers"
    HEADERS_RECEIVED = "headers_received"
    COMPLETED = "completed"
    ERROR_OCCURRED = "error_occurred"


class LifecycleEvent(CamelModel):
    """A phase notification from the host's request-observation hooks."""

    request_id: str
    phase: LifecyclePhase
    url: str = ""
    method: str | None = None
    time_stamp: float
    request_body: Any = None
    request_headers: list[HttpHeader] | None = None
    response_headers: list[HttpHeader] | None = None
    status_code: int | None = None
    status_line: str | None = None
    response_size: int | None = None
    error: str | None = None


class CaptureMessage(CamelModel):
    """A response captured in page context and forwarded over the message channel."""

    url: str
    method: str | None = None
    status: int | None = None
    status_text: str | None = None
    response_body: Any = None
    timestamp: float
    headers: dict[str, str] | None = None
    correlation_token: str | None = None
    request_id: str | None = None
    page_url: str | None = None


# ---------------------------------------------------------------------------
# Session summaries
# ---------------------------------------------------------------------------


class DataSignature(CamelModel):
    session_id: str
    request_count: int
    last_request_id: str | None
    hash: str


class SessionSummary(CamelModel):
    """Derived view of one session on one domain. Recomputed on demand, never stored."""

    session_id: str
    workstation_id: str
    domain: str
    start_time: float
    end_time: float
    requests: list[RequestRecord]
    total_requests: int
    is_staging: bool
    utc_offset: str | None
    data_signature: DataSignature

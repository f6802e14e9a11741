"""Turn host lifecycle events into store merges.

Each phase has one handler that extracts the fields that phase knows about
(headers, session token, cookies, status, timings). Events may arrive out of
order or without their creating phase; the store tolerates that by creating a
partial record.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from logeasy.capture.models import DEFAULT_LOGIN_MARKER, HttpHeader, LifecycleEvent, LifecyclePhase, RequestRecord
from logeasy.capture.persistence import PersistenceManager
from logeasy.capture.store import RequestRecordStore
from logeasy.observability.metrics import LIFECYCLE_EVENTS_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_CORRELATION_HEADER = "q2token"
DEFAULT_ROUTE_PATTERN = r"cdn/deport/([^/]+)"
DEFAULT_MIME_TYPE = "text/plain"

_WORKSTATION_COOKIE = re.compile(r"(?:^|;\s*)workstation-id=([^;]*)", re.IGNORECASE)
_UTC_OFFSET_COOKIE = re.compile(r"(?:^|;\s*)utcOffset=([-+]\d{4})", re.IGNORECASE)

_TERMINAL_PHASES = frozenset({LifecyclePhase.COMPLETED, LifecyclePhase.ERROR_OCCURRED})


def find_header(headers: list[HttpHeader] | None, name: str) -> str | None:
    """Case-insensitive header lookup. Returns the first match's value."""
    if not headers:
        return None
    wanted = name.lower()
    for header in headers:
        if header.name.lower() == wanted:
            return header.value
    return None


def parse_cookie_fields(cookie: str | None) -> dict[str, str]:
    """Pull workstation id and UTC offset out of a Cookie header value."""
    fields: dict[str, str] = {}
    if not cookie:
        return fields
    if match := _WORKSTATION_COOKIE.search(cookie):
        fields["workstation_id"] = match.group(1)
    if match := _UTC_OFFSET_COOKIE.search(cookie):
        fields["utc_offset"] = match.group(1)
    return fields


def _serialize_body(body: Any) -> str | None:
    if body is None:
        return None
    if isinstance(body, str):
        return body
    return json.dumps(body, default=str)


class LifecycleRecorder:
    """Merges lifecycle events into the store and schedules persistence."""

    def __init__(
        self,
        store: RequestRecordStore,
        persistence: PersistenceManager | None = None,
        *,
        correlation_header: str = DEFAULT_CORRELATION_HEADER,
        login_marker: str = DEFAULT_LOGIN_MARKER,
        route_pattern: str = DEFAULT_ROUTE_PATTERN,
    ) -> None:
        self._store = store
        self._persistence = persistence
        self._correlation_header = correlation_header
        self._login_marker = login_marker
        self._route_pattern = re.compile(route_pattern)
        self._handlers: dict[LifecyclePhase, Callable[[LifecycleEvent], dict[str, Any]]] = {
            LifecyclePhase.BEFORE_REQUEST: self._before_request,
            LifecyclePhase.BEFORE_SEND_HEADERS: self._before_send_headers,
            LifecyclePhase.HEADERS_RECEIVED: self._headers_received,
            LifecyclePhase.COMPLETED: self._completed,
            LifecyclePhase.ERROR_OCCURRED: self._error_occurred,
        }

    def record(self, event: LifecycleEvent) -> RequestRecord | None:
        """Merge one lifecycle event.

        Returns:
            The merged record, or None if the event was a second terminal event
            for an already-terminal record.
        """
        existing = self._store.get(event.request_id)
        if existing is not None and existing.is_terminal and event.phase in _TERMINAL_PHASES:
            logger.debug(
                "Ignoring %s for request %s already in state %s",
                event.phase,
                event.request_id,
                existing.state,
            )
            return None

        fields = self._handlers[event.phase](event)
        # Every record needs a url; a late phase may be the first we hear of it.
        if existing is None:
            fields.setdefault("url", event.url)
            fields.setdefault("method", event.method)
            fields.setdefault("start_time", event.time_stamp)
            fields.setdefault("is_login_request", self.is_login_url(event.url))

        record = self._store.observe(event.request_id, fields)
        LIFECYCLE_EVENTS_TOTAL.labels(phase=event.phase.value).inc()
        if self._persistence is not None:
            self._persistence.schedule_flush()
        return record

    def is_login_url(self, url: str) -> bool:
        return bool(url) and self._login_marker in url

    def extract_route_id(self, url: str) -> str | None:
        match = self._route_pattern.search(url)
        return match.group(1) if match else None

    # --- Phase handlers ---

    def _before_request(self, event: LifecycleEvent) -> dict[str, Any]:
        return {
            "url": event.url,
            "method": event.method,
            "start_time": event.time_stamp,
            "post_data": _serialize_body(event.request_body),
            "route_id": self.extract_route_id(event.url),
            "is_login_request": self.is_login_url(event.url),
        }

    def _before_send_headers(self, event: LifecycleEvent) -> dict[str, Any]:
        headers = event.request_headers or []
        fields: dict[str, Any] = {
            "request_headers": headers,
            "correlation_token": find_header(headers, self._correlation_header) or None,
        }
        fields.update(parse_cookie_fields(find_header(headers, "cookie")))
        return fields

    def _headers_received(self, event: LifecycleEvent) -> dict[str, Any]:
        headers = event.response_headers or []
        return {
            "response_headers": headers,
            "status_text": event.status_line,
            "mime_type": find_header(headers, "content-type") or DEFAULT_MIME_TYPE,
        }

    def _completed(self, event: LifecycleEvent) -> dict[str, Any]:
        return {
            "status_code": event.status_code,
            "response_size": event.response_size,
            "end_time": event.time_stamp,
        }

    def _error_occurred(self, event: LifecycleEvent) -> dict[str, Any]:
        return {
            "error": event.error or "unknown error",
            "end_time": event.time_stamp,
        }

"""Reconcile out-of-band response captures with records from the primary hooks.

The page-context agent sees response bodies the request hooks cannot, but its
messages race the lifecycle events. A capture is matched by exact request id
when it carries one, otherwise by identical URL within a time window, and a
synthetic record is created when nothing matches. No capture is ever dropped.
"""

import json
import logging
import uuid
from typing import Any, Literal
from urllib.parse import urljoin, urlsplit

from logeasy.capture.models import DEFAULT_LOGIN_MARKER, CamelModel, CaptureMessage, RequestRecord
from logeasy.capture.persistence import PersistenceManager
from logeasy.capture.store import RequestRecordStore
from logeasy.observability.metrics import CAPTURES_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_MATCH_WINDOW_MS = 30_000

CaptureKind = Literal["merged_by_id", "merged_by_url", "synthesized"]


class CaptureOutcome(CamelModel):
    request_id: str
    kind: CaptureKind


def resolve_url(url: str, page_url: str | None) -> str:
    """Make a relative capture URL absolute against the page it came from."""
    if urlsplit(url).scheme or not page_url:
        return url
    return urljoin(page_url, url)


def body_as_text(body: Any) -> str | None:
    """Store captured bodies as text. Structured bodies become JSON; anything else ``str()``."""
    if body is None or isinstance(body, str):
        return body
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return str(body)


def _content_type(headers: dict[str, str] | None) -> str | None:
    if not headers:
        return None
    for name, value in headers.items():
        if name.lower() == "content-type":
            return value
    return None


class ResponseCaptureCorrelator:
    """Merges capture messages into the store by id, by URL/time window, or by synthesis."""

    def __init__(
        self,
        store: RequestRecordStore,
        persistence: PersistenceManager | None = None,
        *,
        match_window_ms: float = DEFAULT_MATCH_WINDOW_MS,
        login_marker: str = DEFAULT_LOGIN_MARKER,
    ) -> None:
        self._store = store
        self._persistence = persistence
        self._match_window_ms = match_window_ms
        self._login_marker = login_marker

    def ingest(self, message: CaptureMessage) -> CaptureOutcome:
        url = resolve_url(message.url, message.page_url)

        if message.request_id and message.request_id in self._store:
            outcome = self._merge(message.request_id, message, url, "merged_by_id")
        else:
            match = self.find_url_match(url, message.timestamp)
            if match is not None:
                outcome = self._merge(match.request_id, message, url, "merged_by_url")
            else:
                outcome = self._synthesize(message, url)

        CAPTURES_TOTAL.labels(outcome=outcome.kind).inc()
        if self._persistence is not None:
            self._persistence.schedule_flush()
        return outcome

    def find_url_match(self, url: str, timestamp: float) -> RequestRecord | None:
        """Most recent record with this exact URL that started within the window.

        Equal start times prefer a record that has no captured body yet, then
        the earliest-inserted record.
        """
        candidates = [
            r
            for r in self._store.snapshot()
            if r.url == url and abs(r.start_time - timestamp) <= self._match_window_ms
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: (r.start_time, r.response_body is None))

    def _merge(self, request_id: str, message: CaptureMessage, url: str, kind: CaptureKind) -> CaptureOutcome:
        existing = self._store.get(request_id)
        fields: dict[str, Any] = {
            "response_body": body_as_text(message.response_body),
            "captured_response_headers": message.headers,
            "captured_at": message.timestamp,
            "page_url": message.page_url,
            "is_login_request": self._login_marker in url,
        }
        if existing is not None and not existing.correlation_token:
            fields["correlation_token"] = message.correlation_token or None

        self._store.observe(request_id, fields)
        logger.debug("Capture for %s merged into %s (%s)", url, request_id, kind)
        return CaptureOutcome(request_id=request_id, kind=kind)

    def _synthesize(self, message: CaptureMessage, url: str) -> CaptureOutcome:
        request_id = f"capture-{uuid.uuid4().hex[:12]}"
        self._store.observe(
            request_id,
            {
                "url": url,
                "method": message.method or "GET",
                "start_time": message.timestamp,
                "end_time": message.timestamp,
                "status_code": message.status,
                "status_text": message.status_text,
                "mime_type": _content_type(message.headers),
                "response_body": body_as_text(message.response_body),
                "captured_response_headers": message.headers,
                "captured_at": message.timestamp,
                "correlation_token": message.correlation_token or None,
                "page_url": message.page_url,
                "is_synthetic": True,
                "is_login_request": self._login_marker in url,
            },
        )
        logger.info("No match for capture of %s, synthesized record %s", url, request_id)
        return CaptureOutcome(request_id=request_id, kind="synthesized")

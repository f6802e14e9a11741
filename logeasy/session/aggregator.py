"""Derive per-domain session summaries from a store snapshot.

A summary groups the records that share the active correlation token on one
domain, picks a single canonical login record among duplicate observations,
pads the time window for downstream log queries, and carries a cheap signature
so consumers can skip re-rendering an unchanged session.
"""

import json
import logging
import re
import zlib
from collections.abc import Iterable, Sequence
from typing import Any
from urllib.parse import urlsplit

from logeasy.capture.models import DEFAULT_LOGIN_MARKER, DataSignature, RequestRecord, SessionSummary
from logeasy.capture.store import RequestRecordStore
from logeasy.session.offsets import normalize_utc_offset

logger = logging.getLogger(__name__)

DEFAULT_PADDING_MS = 5 * 60 * 1000
DEFAULT_STAGING_PATTERN = r"staging|stage|temporary"
UNKNOWN = "N/A"


def get_domain(url: str) -> str:
    """Hostname of ``url``; for scheme-less input, everything before the first slash."""
    if not url:
        return ""
    hostname = urlsplit(url).hostname
    if hostname:
        return hostname
    return url.split("/")[0]


def has_token(record: RequestRecord) -> bool:
    return bool(record.correlation_token) and record.correlation_token != UNKNOWN


def sort_newest_first(records: Iterable[RequestRecord]) -> list[RequestRecord]:
    return sorted(records, key=lambda r: r.start_time, reverse=True)


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def derive_workstation_id(records: Sequence[RequestRecord]) -> str:
    for record in records:
        if record.workstation_id and record.workstation_id != UNKNOWN:
            return record.workstation_id
    return UNKNOWN


def derive_time_range(records: Sequence[RequestRecord], padding_ms: float = DEFAULT_PADDING_MS) -> tuple[float, float]:
    """Padded ``(start, end)`` window around the records, in epoch ms.

    The end uses each record's end time, falling back to its start time.
    """
    starts = [r.start_time for r in records]
    ends = [r.end_time if r.end_time is not None else r.start_time for r in records]
    return min(starts) - padding_ms, max(ends) + padding_ms


def detect_staging(records: Sequence[RequestRecord], pattern: re.Pattern[str]) -> bool:
    for record in records:
        parts = urlsplit(record.url)
        target = f"{parts.hostname}{parts.path}" if parts.hostname else record.url
        if pattern.search(target):
            return True
    return False


def _offset_from_body(body: str | None) -> str | None:
    if not body:
        return None
    try:
        payload: Any = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    candidate = data.get("utcOffset") if isinstance(data, dict) else None
    if candidate is None:
        candidate = payload.get("utcOffset")
    return normalize_utc_offset(candidate)


def derive_utc_offset(records: Sequence[RequestRecord]) -> str | None:
    """First normalizable offset scanning newest to oldest.

    Each record's own offset field is checked before its parsed response body.
    """
    for record in sort_newest_first(records):
        normalized = normalize_utc_offset(record.utc_offset)
        if normalized:
            return normalized
        normalized = _offset_from_body(record.response_body)
        if normalized:
            return normalized
    return None


def login_score(record: RequestRecord) -> int:
    """Preference among duplicate login observations: captured body > capture > hook-only."""
    if record.is_synthetic and record.response_body:
        return 3
    if record.is_synthetic:
        return 2
    return 1


def select_display_requests(
    records: Sequence[RequestRecord],
    login_marker: str = DEFAULT_LOGIN_MARKER,
) -> list[RequestRecord]:
    """Keep one canonical login record first, then everything else newest first."""

    def is_login(record: RequestRecord) -> bool:
        return record.is_login_request or login_marker in record.url

    logins = [r for r in records if is_login(r)]
    others = sort_newest_first(r for r in records if not is_login(r))
    if not logins:
        return others

    preferred = max(logins, key=lambda r: (login_score(r), r.start_time))
    return [preferred, *others]


def compute_signature(session_id: str, requests: Sequence[RequestRecord]) -> DataSignature:
    """Cheap, non-cryptographic change detector for a summary."""
    newest = sort_newest_first(requests)
    last_request_id = newest[0].request_id if newest else None
    digest = zlib.crc32(f"{session_id}|{len(requests)}|{last_request_id}".encode())
    return DataSignature(
        session_id=session_id,
        request_count=len(requests),
        last_request_id=last_request_id,
        hash=f"{digest:08x}",
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class SessionAggregator:
    """Builds SessionSummary objects from store snapshots."""

    def __init__(
        self,
        store: RequestRecordStore,
        *,
        padding_ms: float = DEFAULT_PADDING_MS,
        staging_pattern: str = DEFAULT_STAGING_PATTERN,
        login_marker: str = DEFAULT_LOGIN_MARKER,
    ) -> None:
        self._store = store
        self._padding_ms = padding_ms
        self._staging_pattern = re.compile(staging_pattern, re.IGNORECASE)
        self._login_marker = login_marker

    def summarize(self, domain: str) -> SessionSummary | None:
        """Summarize the active session on ``domain``, or None if there is none."""
        relevant = [
            r for r in self._store.snapshot() if (has_token(r) or r.is_synthetic) and get_domain(r.url) == domain
        ]
        if not relevant:
            return None

        tokened = [r for r in relevant if has_token(r)]
        if not tokened:
            logger.debug("Only untokened captures for %s, no active session", domain)
            return None

        # The newest token wins so a rotated session hides the previous one.
        session_id = max(tokened, key=lambda r: r.start_time).correlation_token or ""
        session_records = [r for r in relevant if r.correlation_token == session_id]

        requests = select_display_requests(session_records, self._login_marker)
        start_time, end_time = derive_time_range(session_records, self._padding_ms)

        return SessionSummary(
            session_id=session_id,
            workstation_id=derive_workstation_id(session_records),
            domain=domain,
            start_time=start_time,
            end_time=end_time,
            requests=requests,
            total_requests=len(requests),
            is_staging=detect_staging(session_records, self._staging_pattern),
            utc_offset=derive_utc_offset(session_records),
            data_signature=compute_signature(session_id, requests),
        )

"""Extract the signed-in user's profile from the newest captured login response."""

import json
import logging
from collections.abc import Sequence
from typing import Any

from logeasy.capture.models import DEFAULT_LOGIN_MARKER, RequestRecord
from logeasy.session.aggregator import sort_newest_first
from logeasy.session.offsets import normalize_utc_offset

logger = logging.getLogger(__name__)


def extract_user_details(
    records: Sequence[RequestRecord],
    login_marker: str = DEFAULT_LOGIN_MARKER,
) -> dict[str, Any] | None:
    """Parse the newest login record that has a response body.

    The payload's ``data`` object is used when present, otherwise the whole
    payload. ``utcOffset`` is normalized, and ``lastLogin``, ``lastActivity``
    and ``sessionId`` are filled from the logon timestamps / session token
    when the payload omits them.

    Returns:
        The normalized user details, or None if no usable login response exists.
    """
    candidates = [
        r
        for r in records
        if (r.is_login_request or login_marker in r.url) and r.response_body and r.response_body.strip()
    ]
    if not candidates:
        return None

    newest = sort_newest_first(candidates)[0]
    try:
        payload: Any = json.loads(newest.response_body or "")
    except json.JSONDecodeError:
        logger.warning("Login response for %s is not JSON", newest.request_id)
        return None

    raw = payload.get("data", payload) if isinstance(payload, dict) else None
    if not isinstance(raw, dict) or not raw:
        return None

    details: dict[str, Any] = dict(raw)
    offset = normalize_utc_offset(raw.get("utcOffset", newest.utc_offset))
    if offset:
        details["utcOffset"] = offset

    if not details.get("lastLogin"):
        details["lastLogin"] = (
            details.get("lastSuccessfulLogonDateTime")
            or details.get("currentLogonDateTime")
            or details.get("lastFailedLogonDateTime")
        )
    if not details.get("lastActivity"):
        details["lastActivity"] = details.get("currentLogonDateTime") or details.get("lastSuccessfulLogonDateTime")
    if not details.get("sessionId") and details.get("sessionToken"):
        details["sessionId"] = details["sessionToken"]

    return details

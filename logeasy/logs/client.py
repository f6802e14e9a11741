"""Async client for the log search API.

Runs the search strings built in ``logeasy.logs.queries`` against the remote
search endpoint, walking each environment's fallback queries until one returns
log entries.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from typing_extensions import TypedDict

import httpx

from logeasy.capture.models import SessionSummary
from logeasy.config import get_settings
from logeasy.logs.fallback import first_success
from logeasy.logs.queries import EnvironmentKey, build_environment_queries
from logeasy.observability.metrics import LOG_SEARCH_DURATION, LOG_SEARCHES_TOTAL

logger = logging.getLogger(__name__)

QUERY_ENDPOINT = "/api/v3/logs/query"
MAX_ERROR_BODY_LENGTH = 500


class LogSearchError(Exception):
    """A log search request failed (connection, timeout, HTTP status or bad payload)."""


class LogSearchResponse(TypedDict, total=False):
    """Top-level search API response."""

    Data: list[dict[str, Any]]
    SearchId: str


class EnvironmentLogs(TypedDict):
    environment: EnvironmentKey
    query_name: str
    search: str
    entries: list[dict[str, Any]]


def is_log_search_configured() -> bool:
    """Check whether the log search API is configured (non-empty URL)."""
    try:
        return bool(get_settings().log_search_url)
    except Exception:
        return False


class LogSearchClient:
    def __init__(self, base_url: str, token: str = "", timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls) -> "LogSearchClient":
        settings = get_settings()
        return cls(settings.log_search_url, settings.log_search_token, settings.log_search_timeout_seconds)

    async def query(self, search: str) -> LogSearchResponse:
        """Run one search string.

        Raises:
            LogSearchError: On connection failure, timeout, non-2xx status or non-JSON body.
        """
        url = f"{self._base_url}{QUERY_ENDPOINT}"
        payload = {
            "searchId": "",
            "query": search,
            "timeArgs": None,
            "isRetry": False,
            "isDownload": False,
            "isLegacyFormat": False,
        }
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.info("Log search: %s", search)
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(url, json=payload, headers=headers)
                _ = response.raise_for_status()
                data: LogSearchResponse = response.json()
        except httpx.ConnectError as e:
            LOG_SEARCHES_TOTAL.labels(status="error").inc()
            raise LogSearchError(f"Cannot connect to log search at {self._base_url}: {e}") from e
        except httpx.TimeoutException as e:
            LOG_SEARCHES_TOTAL.labels(status="error").inc()
            raise LogSearchError(f"Log search timed out after {self._timeout_seconds}s: {e}") from e
        except httpx.HTTPStatusError as e:
            LOG_SEARCHES_TOTAL.labels(status="error").inc()
            body = e.response.text[:MAX_ERROR_BODY_LENGTH]
            raise LogSearchError(f"Log search API error: HTTP {e.response.status_code} - {body}") from e
        except ValueError as e:
            LOG_SEARCHES_TOTAL.labels(status="error").inc()
            raise LogSearchError(f"Log search returned a non-JSON body: {e}") from e
        finally:
            LOG_SEARCH_DURATION.observe(time.monotonic() - start)

        LOG_SEARCHES_TOTAL.labels(status="success").inc()
        return data

    async def search_environment(self, summary: SessionSummary, environment: EnvironmentKey) -> EnvironmentLogs:
        """Run an environment's queries in fallback order until one returns entries.

        Raises:
            AllStrategiesFailedError: If every query failed or came back empty.
        """
        plan = build_environment_queries(summary, environment)

        def make_strategy(search: str) -> Callable[[], Awaitable[LogSearchResponse]]:
            async def run() -> LogSearchResponse:
                return await self.query(search)

            return run

        strategies = [(q["name"], make_strategy(q["search"])) for q in plan["queries"]]
        name, result = await first_success(strategies, accept=lambda r: bool(r.get("Data")))
        search = next(q["search"] for q in plan["queries"] if q["name"] == name)
        return {
            "environment": environment,
            "query_name": name,
            "search": search,
            "entries": list(result.get("Data", [])),
        }

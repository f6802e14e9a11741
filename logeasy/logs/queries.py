"""Build log search strings for a session summary.

Each backend environment keys its logs either by session id or by
workstation id. For every environment the plan holds an ordered list of
queries: the padded session window first, then wider fallbacks that still
find something when clocks or indexing lag behind.
"""

from datetime import UTC, datetime
from typing import Literal

from typing_extensions import TypedDict
from urllib.parse import quote

from logeasy.capture.models import SessionSummary

EnvironmentKey = Literal["hq", "lightbridge", "kamino", "ardent"]

ENVIRONMENTS: tuple[EnvironmentKey, ...] = ("hq", "kamino", "lightbridge", "ardent")

# Which identifier each environment's logs are keyed by.
_ENVIRONMENT_FIELDS: dict[EnvironmentKey, Literal["sessionId", "workstationId"]] = {
    "hq": "sessionId",
    "kamino": "sessionId",
    "lightbridge": "workstationId",
    "ardent": "workstationId",
}

RECENT_WINDOW = "-8h"
ARDENT_WINDOW = "-15m"
MAX_RESULTS = 10_000
FALLBACK_MAX_RESULTS = 1000


class NamedQuery(TypedDict):
    name: str
    search: str


class EnvironmentQueries(TypedDict):
    environment: EnvironmentKey
    index: str
    queries: list[NamedQuery]  # in fallback order


class LogQueryPlan(TypedDict):
    session_id: str
    workstation_id: str
    formatted_start: str
    formatted_end: str
    environments: dict[str, EnvironmentQueries]
    urls: dict[str, str]  # environment -> log viewer link for its primary query


def format_datetime(timestamp_ms: float | None) -> str:
    """Format epoch ms as ``MM/DD/YYYY:HH:MM:SS`` in UTC, or ``N/A``."""
    if not timestamp_ms:
        return "N/A"
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).strftime("%m/%d/%Y:%H:%M:%S")


def index_name(environment: EnvironmentKey, is_staging: bool) -> str:
    tier = "stage" if is_staging else "prod"
    return f"app_logs_{tier}_{environment}"


def _search(index: str, filters: str, limit: int = MAX_RESULTS) -> str:
    return f'search index="{index}" {filters} | fields * | extract | sort timestamp, seqId | head {limit}'


def build_environment_queries(
    summary: SessionSummary,
    environment: EnvironmentKey,
) -> EnvironmentQueries:
    index = index_name(environment, summary.is_staging)
    field = _ENVIRONMENT_FIELDS[environment]
    value = summary.session_id if field == "sessionId" else summary.workstation_id
    start = format_datetime(summary.start_time)
    end = format_datetime(summary.end_time)

    queries: list[NamedQuery] = []
    if environment == "ardent":
        queries.append(
            {"name": "workstation_recent", "search": _search(index, f'{field}="{value}" earliest="{ARDENT_WINDOW}"')}
        )
    else:
        queries.append(
            {
                "name": "session_window",
                "search": _search(index, f'{field}="{value}" earliest="{start}" latest="{end}"'),
            }
        )
    queries.append(
        {"name": "identifier_recent", "search": _search(index, f'{field}="{value}" earliest="{RECENT_WINDOW}"')}
    )
    if environment == "hq":
        queries.append(
            {
                "name": "index_recent",
                "search": _search(index, f'earliest="{RECENT_WINDOW}"', limit=FALLBACK_MAX_RESULTS),
            }
        )

    return {"environment": environment, "index": index, "queries": queries}


def viewer_link(viewer_url: str, search: str) -> str:
    """Deep link that opens ``search`` in the log viewer at ``viewer_url``."""
    return f"{viewer_url.rstrip('/')}/logs/{quote(search, safe='')}"


def build_log_query_plan(summary: SessionSummary, viewer_url: str = "") -> LogQueryPlan:
    """Queries for every environment, keyed by environment name.

    With a ``viewer_url`` the plan also carries one viewer link per environment
    for its primary query; without one ``urls`` is empty.
    """
    environments: dict[str, EnvironmentQueries] = {env: build_environment_queries(summary, env) for env in ENVIRONMENTS}
    urls = (
        {env: viewer_link(viewer_url, plan["queries"][0]["search"]) for env, plan in environments.items()}
        if viewer_url
        else {}
    )
    return {
        "session_id": summary.session_id,
        "workstation_id": summary.workstation_id,
        "formatted_start": format_datetime(summary.start_time),
        "formatted_end": format_datetime(summary.end_time),
        "environments": environments,
        "urls": urls,
    }

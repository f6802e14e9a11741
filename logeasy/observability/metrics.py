"""Prometheus metric definitions for capture core self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
LOG_SEARCH_DURATION_BUCKETS = (0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# HTTP API metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "logeasy_request_duration_seconds",
    "API request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "logeasy_requests_total",
    "Total number of API requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# Store metrics
# ---------------------------------------------------------------------------

STORE_SIZE = Gauge(
    "logeasy_store_records",
    "Number of request records currently held in the store",
)

RECORDS_EVICTED_TOTAL = Counter(
    "logeasy_records_evicted_total",
    "Records removed from the store",
    labelnames=["reason"],
)

LIFECYCLE_EVENTS_TOTAL = Counter(
    "logeasy_lifecycle_events_total",
    "Lifecycle events merged into the store",
    labelnames=["phase"],
)

CAPTURES_TOTAL = Counter(
    "logeasy_captures_total",
    "Response-capture messages by correlation outcome",
    labelnames=["outcome"],
)

# ---------------------------------------------------------------------------
# Persistence metrics
# ---------------------------------------------------------------------------

FLUSHES_TOTAL = Counter(
    "logeasy_snapshot_flushes_total",
    "Snapshot writes to the durable store",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Log search metrics
# ---------------------------------------------------------------------------

LOG_SEARCHES_TOTAL = Counter(
    "logeasy_log_searches_total",
    "Log search queries sent to the search API",
    labelnames=["status"],
)

LOG_SEARCH_DURATION = Histogram(
    "logeasy_log_search_duration_seconds",
    "Time taken by a single log search query in seconds",
    buckets=LOG_SEARCH_DURATION_BUCKETS,
)

APP_INFO = Info(
    "logeasy",
    "LogEasy capture core build information",
)

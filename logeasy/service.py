"""Composition root for the capture core.

Wires the store, persistence, recorder, correlator, aggregator and message
router around one durable port and one clock, and owns the periodic retention
sweep. Uses AsyncIOScheduler so the sweep runs on the same event loop as every
other store mutation.
"""

import contextlib
import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from logeasy.capture.correlator import CaptureOutcome, ResponseCaptureCorrelator
from logeasy.capture.lifecycle import LifecycleRecorder
from logeasy.capture.models import CaptureMessage, LifecycleEvent, RequestRecord, SessionSummary
from logeasy.capture.persistence import PersistenceManager
from logeasy.capture.storage import InMemoryKeyValueStore, KeyValuePort, SqliteKeyValueStore
from logeasy.capture.store import Clock, RequestRecordStore, epoch_ms
from logeasy.config import Settings, get_settings
from logeasy.messages import MessageRouter, RuntimeMessage
from logeasy.session.aggregator import SessionAggregator
from logeasy.session.user_details import extract_user_details

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


class CaptureService:
    def __init__(self, port: KeyValuePort, settings: Settings, clock: Clock = epoch_ms) -> None:
        self.settings = settings
        self.store = RequestRecordStore(clock)
        self.persistence = PersistenceManager(
            self.store,
            port,
            debounce_ms=settings.flush_debounce_ms,
            max_wait_ms=settings.flush_max_wait_ms,
            max_records=settings.max_records,
        )
        self.recorder = LifecycleRecorder(
            self.store,
            self.persistence,
            correlation_header=settings.correlation_header,
            login_marker=settings.login_url_marker,
            route_pattern=settings.route_pattern,
        )
        self.correlator = ResponseCaptureCorrelator(
            self.store,
            self.persistence,
            match_window_ms=settings.capture_match_window_ms,
            login_marker=settings.login_url_marker,
        )
        self.aggregator = SessionAggregator(
            self.store,
            padding_ms=settings.session_padding_minutes * 60 * 1000,
            staging_pattern=settings.staging_pattern,
            login_marker=settings.login_url_marker,
        )
        self.router = MessageRouter(self)
        self._env_info: dict[str, Any] | None = None
        self._scheduler: AsyncIOScheduler | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CaptureService":
        """Build a service backed by SQLite, or by memory if no database path is set."""
        settings = settings or get_settings()
        port: KeyValuePort
        if settings.storage_db_path:
            port = SqliteKeyValueStore(settings.storage_db_path)
        else:
            logger.warning("STORAGE_DB_PATH not set, captured requests will not survive a restart")
            port = InMemoryKeyValueStore()
        return cls(port, settings)

    # --- Lifecycle ---

    def restore(self) -> int:
        """Reload persisted records and cached environment info."""
        restored = self.persistence.restore()
        self._env_info = self.persistence.load_env_info()
        return restored

    def start(self) -> None:
        """Restore state and start the retention sweep. Call from a running event loop."""
        self.restore()
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sweep_job,
            trigger=IntervalTrigger(seconds=self.settings.sweep_interval_seconds),
            id="retention_sweep",
            name="Request record retention sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Retention sweep scheduled every %ds", self.settings.sweep_interval_seconds)

    def stop(self) -> None:
        """Stop the sweep and flush anything still pending."""
        if self._scheduler is not None:
            with contextlib.suppress(Exception):
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Retention sweep stopped")
        self.persistence.close()

    async def _sweep_job(self) -> None:
        try:
            self.sweep()
        except Exception:
            logger.exception("Retention sweep failed")

    def sweep(self) -> int:
        removed = self.store.sweep_older_than(self.settings.max_record_age_hours * HOUR_MS)
        if removed:
            self.persistence.flush()
        return removed

    # --- Inputs ---

    def record_event(self, event: LifecycleEvent) -> RequestRecord | None:
        return self.recorder.record(event)

    def ingest_capture(self, message: CaptureMessage) -> CaptureOutcome:
        return self.correlator.ingest(message)

    def dispatch(self, message: RuntimeMessage) -> dict[str, Any]:
        return self.router.dispatch(message)

    def cache_env_info(self, env_info: dict[str, Any]) -> None:
        self._env_info = env_info
        self.persistence.cache_env_info(env_info)

    # --- Outputs ---

    @property
    def env_info(self) -> dict[str, Any] | None:
        return self._env_info

    def get_all_records(self) -> tuple[RequestRecord, ...]:
        return self.store.snapshot()

    def clear_all(self) -> None:
        """Drop every record and persist the empty store immediately."""
        self.store.clear()
        self.persistence.flush()
        logger.info("Cleared all captured requests")

    def summarize(self, domain: str) -> SessionSummary | None:
        return self.aggregator.summarize(domain)

    def user_details(self, domain: str) -> dict[str, Any] | None:
        """Profile from the login response of the active session on ``domain``."""
        summary = self.summarize(domain)
        if summary is None:
            return None
        return extract_user_details(summary.requests, self.settings.login_url_marker)

"""Debounced snapshot persistence for the request record store.

Every store mutation calls ``schedule_flush()``, which evicts the store back to
capacity if it has grown past it and then (re)arms one timer on the running
asyncio loop. When the quiet period elapses, or once a flush has been pending
for ``max_wait_ms`` under a steady stream of mutations, the full snapshot is
written as one JSON object under ``RECORDS_KEY``. Mutations after the last
successful flush are lost if the process dies first; bursts of mutations cost
a single write. Without a running loop there is nothing to debounce on, so the
snapshot is written immediately.

Failures here are logged and never raised to callers of the store.
"""

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from logeasy.capture.models import RequestRecord
from logeasy.capture.storage import KeyValuePort
from logeasy.capture.store import RequestRecordStore
from logeasy.observability.metrics import FLUSHES_TOTAL

logger = logging.getLogger(__name__)

RECORDS_KEY = "capturedRequests"
ENV_INFO_KEY = "cachedEnvInfo"

DEFAULT_DEBOUNCE_MS = 1000
DEFAULT_MAX_WAIT_MS = 5000
DEFAULT_MAX_RECORDS = 1000


class PersistenceManager:
    """Writes and restores store snapshots through a durable key-value port."""

    def __init__(
        self,
        store: RequestRecordStore,
        port: KeyValuePort,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> None:
        self._store = store
        self._port = port
        self._debounce_seconds = debounce_ms / 1000
        self._max_wait_seconds = max(max_wait_ms, debounce_ms) / 1000
        self._max_records = max_records
        self._timer: asyncio.TimerHandle | None = None
        self._pending_since = 0.0

    @property
    def flush_pending(self) -> bool:
        return self._timer is not None

    def schedule_flush(self) -> None:
        """Bound the store and arm or re-arm the debounce timer."""
        if len(self._store) > self._max_records:
            self._store.evict_to_capacity(self._max_records)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return

        now = loop.time()
        if self._timer is None:
            self._pending_since = now
        else:
            self._timer.cancel()
        # Never push the write past pending_since + max_wait.
        delay = min(self._debounce_seconds, max(0.0, self._pending_since + self._max_wait_seconds - now))
        self._timer = loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def flush(self) -> bool:
        """Evict to capacity and write the snapshot. Never raises.

        Returns:
            True if the port accepted the write.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        try:
            self._store.evict_to_capacity(self._max_records)
            payload = {r.request_id: r.to_json_dict() for r in self._store.snapshot()}
            ok = self._port.set(RECORDS_KEY, json.dumps(payload))
        except Exception:
            FLUSHES_TOTAL.labels(status="error").inc()
            logger.exception("Failed to persist request snapshot")
            return False

        if not ok:
            FLUSHES_TOTAL.labels(status="error").inc()
            logger.warning("Snapshot store rejected write of %d records", len(payload))
            return False

        FLUSHES_TOTAL.labels(status="success").inc()
        logger.debug("Persisted %d records", len(payload))
        return True

    def restore(self) -> int:
        """Repopulate the store from the last persisted snapshot.

        A missing snapshot is a cold start, not an error. Malformed snapshots and
        individual invalid entries are logged and skipped.

        Returns:
            Number of records restored.
        """
        try:
            raw = self._port.get(RECORDS_KEY)
        except Exception:
            logger.exception("Failed to read request snapshot")
            return 0

        if raw is None:
            logger.info("No persisted snapshot found, starting with an empty store")
            return 0

        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Persisted snapshot is not valid JSON, ignoring it")
            return 0
        if not isinstance(payload, dict):
            logger.warning("Persisted snapshot is not a JSON object, ignoring it")
            return 0

        records: list[RequestRecord] = []
        for request_id, entry in payload.items():
            try:
                record = RequestRecord.model_validate(entry)
            except ValidationError:
                logger.warning("Skipping invalid persisted record '%s'", request_id)
                continue
            records.append(record)

        restored = self._store.restore(records)
        self._store.evict_to_capacity(self._max_records)
        logger.info("Restored %d records from snapshot", restored)
        return restored

    def cache_env_info(self, env_info: dict[str, Any]) -> bool:
        """Persist environment metadata reported by the page. Written immediately."""
        try:
            return self._port.set(ENV_INFO_KEY, json.dumps(env_info, default=str))
        except Exception:
            logger.exception("Failed to cache environment info")
            return False

    def load_env_info(self) -> dict[str, Any] | None:
        try:
            raw = self._port.get(ENV_INFO_KEY)
        except Exception:
            logger.exception("Failed to read cached environment info")
            return None
        if raw is None:
            return None
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Cached environment info is not valid JSON, ignoring it")
            return None
        return data if isinstance(data, dict) else None

    def close(self) -> None:
        """Flush pending changes and cancel the timer."""
        if self._timer is not None:
            self.flush()

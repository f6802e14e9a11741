"""In-memory request record store with create-on-first-observation merge semantics.

The store is the only shared mutable state in the capture core. Every other
component reads snapshots or goes through ``observe``; nothing outside this
module mutates a RequestRecord in place.
"""

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from logeasy.capture.models import RequestRecord
from logeasy.observability.metrics import RECORDS_EVICTED_TOTAL, STORE_SIZE

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# Flags only ever go from False to True on merge.
_STICKY_FLAGS = frozenset({"is_synthetic", "is_login_request"})


def epoch_ms() -> float:
    """Wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class RequestRecordStore:
    """Mapping of request id to RequestRecord with field-merge semantics."""

    def __init__(self, clock: Clock = epoch_ms) -> None:
        self._clock = clock
        self._records: dict[str, RequestRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._records

    def observe(self, request_id: str, fields: Mapping[str, Any]) -> RequestRecord:
        """Create or merge a record and return a copy of its merged state.

        Null values in ``fields`` are ignored. ``start_time`` is only taken when
        the record is created (falling back to the clock), and ``end_time`` is
        only taken while it is still unset.

        Raises:
            ValueError: If ``fields`` names an attribute RequestRecord does not have.
        """
        unknown = set(fields) - set(RequestRecord.model_fields)
        if unknown:
            msg = f"Unknown RequestRecord fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        values = {k: v for k, v in fields.items() if v is not None and k != "request_id"}
        record = self._records.get(request_id)

        if record is None:
            values.setdefault("start_time", self._clock())
            record = RequestRecord.model_validate({"request_id": request_id, **values})
            self._records[request_id] = record
            STORE_SIZE.set(len(self._records))
            return record.model_copy(deep=True)

        merged = record.model_dump()
        for key, value in values.items():
            if key == "start_time":
                continue
            if key == "end_time" and record.end_time is not None:
                continue
            if key in _STICKY_FLAGS:
                merged[key] = merged[key] or bool(value)
                continue
            merged[key] = value

        record = RequestRecord.model_validate(merged)
        self._records[request_id] = record
        return record.model_copy(deep=True)

    def get(self, request_id: str) -> RequestRecord | None:
        record = self._records.get(request_id)
        return record.model_copy(deep=True) if record is not None else None

    def evict_to_capacity(self, max_count: int) -> int:
        """Keep only the ``max_count`` most recent records by start time.

        Returns:
            Number of records evicted.
        """
        excess = len(self._records) - max_count
        if excess <= 0:
            return 0

        newest_first = sorted(self._records.values(), key=lambda r: r.start_time, reverse=True)
        self._records = {r.request_id: r for r in newest_first[:max_count]}
        STORE_SIZE.set(len(self._records))
        RECORDS_EVICTED_TOTAL.labels(reason="capacity").inc(excess)
        logger.debug("Evicted %d records to stay within %d", excess, max_count)
        return excess

    def sweep_older_than(self, max_age_ms: float) -> int:
        """Drop records whose start time is older than ``now - max_age_ms``.

        Returns:
            Number of records removed.
        """
        cutoff = self._clock() - max_age_ms
        stale = [rid for rid, r in self._records.items() if r.start_time < cutoff]
        for rid in stale:
            del self._records[rid]
        if stale:
            STORE_SIZE.set(len(self._records))
            RECORDS_EVICTED_TOTAL.labels(reason="age").inc(len(stale))
            logger.info("Swept %d records older than %.0f ms", len(stale), max_age_ms)
        return len(stale)

    def clear(self) -> None:
        self._records.clear()
        STORE_SIZE.set(0)

    def snapshot(self) -> tuple[RequestRecord, ...]:
        """Immutable copy of all records, in insertion order."""
        return tuple(r.model_copy(deep=True) for r in self._records.values())

    def restore(self, records: Iterable[RequestRecord]) -> int:
        """Insert previously persisted records whose ids are not already live.

        Returns:
            Number of records inserted.
        """
        inserted = 0
        for record in records:
            if record.request_id in self._records:
                continue
            self._records[record.request_id] = record.model_copy(deep=True)
            inserted += 1
        STORE_SIZE.set(len(self._records))
        return inserted

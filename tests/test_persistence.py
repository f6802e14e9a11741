"""Tests for debounced snapshot persistence and the key-value adapters."""

import asyncio
import json
import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from logeasy.capture.models import RequestRecord
from logeasy.capture.persistence import ENV_INFO_KEY, RECORDS_KEY, PersistenceManager
from logeasy.capture.storage import InMemoryKeyValueStore, SqliteKeyValueStore, get_connection
from logeasy.capture.store import RequestRecordStore
from tests.helpers import FakeClock


class CountingStore(InMemoryKeyValueStore):
    """In-memory port that records every write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, str]] = []

    def set(self, key: str, value: str) -> bool:
        self.writes.append((key, value))
        return super().set(key, value)


def _manager(port: object, **kwargs: int) -> tuple[PersistenceManager, RequestRecordStore]:
    store = RequestRecordStore(FakeClock())
    return PersistenceManager(store, port, **kwargs), store  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Debounced flush
# ---------------------------------------------------------------------------


class TestDebounce:
    async def test_burst_of_mutations_costs_one_write(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, debounce_ms=20)

        for i in range(5):
            store.observe(f"r{i}", {"url": "https://bank.example/a", "start_time": 1000 + i})
            manager.schedule_flush()

        assert manager.flush_pending
        assert port.writes == []

        await asyncio.sleep(0.1)

        assert not manager.flush_pending
        assert len(port.writes) == 1
        key, value = port.writes[0]
        assert key == RECORDS_KEY
        assert set(json.loads(value)) == {"r0", "r1", "r2", "r3", "r4"}

    async def test_flush_writes_camel_case(self) -> None:
        port = CountingStore()
        manager, store = _manager(port)
        store.observe("r1", {"url": "https://bank.example/a", "start_time": 1000, "correlation_token": "abc"})

        assert manager.flush() is True

        payload = json.loads(port.writes[-1][1])
        assert payload["r1"]["requestId"] == "r1"
        assert payload["r1"]["correlationToken"] == "abc"
        assert "endTime" not in payload["r1"]

    async def test_flush_evicts_to_capacity(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, max_records=2)
        for i in range(5):
            store.observe(f"r{i}", {"url": "https://bank.example/a", "start_time": 1000 + i})

        manager.flush()

        assert len(store) == 2
        assert set(json.loads(port.writes[-1][1])) == {"r3", "r4"}

    async def test_close_flushes_pending(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, debounce_ms=10_000)
        store.observe("r1", {"url": "https://bank.example/a"})
        manager.schedule_flush()

        manager.close()

        assert not manager.flush_pending
        assert len(port.writes) == 1

    def test_close_without_pending_does_not_write(self) -> None:
        port = CountingStore()
        manager, _ = _manager(port)
        manager.close()
        assert port.writes == []


class TestSteadyStream:
    async def test_store_stays_bounded_while_debounce_keeps_rearming(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, debounce_ms=20, max_wait_ms=50, max_records=10)

        sizes: list[int] = []
        for i in range(60):
            store.observe(f"r{i}", {"url": "https://bank.example/a", "start_time": 1000 + i})
            manager.schedule_flush()
            sizes.append(len(store))
            await asyncio.sleep(0.005)

        assert max(sizes) <= 10
        assert port.writes, "a snapshot should be written before the stream goes quiet"
        assert all(key == RECORDS_KEY for key, _ in port.writes)
        assert len(json.loads(port.writes[-1][1])) <= 10
        manager.close()

    async def test_max_wait_forces_write_during_stream(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, debounce_ms=30, max_wait_ms=60)

        for i in range(40):
            store.observe(f"r{i}", {"url": "https://bank.example/a", "start_time": 1000 + i})
            manager.schedule_flush()
            await asyncio.sleep(0.01)
            if port.writes:
                break

        assert port.writes
        manager.close()


class TestWithoutEventLoop:
    def test_schedule_flush_writes_immediately(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, debounce_ms=10_000)
        store.observe("r1", {"url": "https://bank.example/a", "start_time": 1000})

        manager.schedule_flush()

        assert not manager.flush_pending
        assert len(port.writes) == 1
        assert set(json.loads(port.writes[0][1])) == {"r1"}

    def test_schedule_flush_still_evicts(self) -> None:
        port = CountingStore()
        manager, store = _manager(port, max_records=3)
        for i in range(5):
            store.observe(f"r{i}", {"url": "https://bank.example/a", "start_time": 1000 + i})

        manager.schedule_flush()

        assert len(store) == 3
        assert set(json.loads(port.writes[-1][1])) == {"r2", "r3", "r4"}


class TestFlushFailures:
    def test_port_exception_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        port = MagicMock()
        port.set.side_effect = OSError("disk full")
        manager, store = _manager(port)
        store.observe("r1", {"url": "https://bank.example/a"})

        with caplog.at_level(logging.ERROR, logger="logeasy.capture.persistence"):
            assert manager.flush() is False

        assert "Failed to persist request snapshot" in caplog.text
        assert "r1" in store

    def test_rejected_write_returns_false(self) -> None:
        port = MagicMock()
        port.set.return_value = False
        manager, _ = _manager(port)
        assert manager.flush() is False


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


class TestRestore:
    def test_cold_start(self) -> None:
        manager, store = _manager(InMemoryKeyValueStore())
        assert manager.restore() == 0
        assert len(store) == 0

    def test_round_trip_through_port(self) -> None:
        port = InMemoryKeyValueStore()
        writer, source = _manager(port)
        source.observe("r1", {"url": "https://bank.example/a", "start_time": 1000, "correlation_token": "abc"})
        source.observe("r2", {"url": "https://bank.example/b", "start_time": 2000, "is_synthetic": True})
        writer.flush()

        reader, restored = _manager(port)
        assert reader.restore() == 2
        r1 = restored.get("r1")
        r2 = restored.get("r2")
        assert r1 is not None and r2 is not None
        assert r1.correlation_token == "abc"
        assert r2.is_synthetic is True

    def test_malformed_snapshot_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        port = InMemoryKeyValueStore()
        port.set(RECORDS_KEY, "{not json")
        manager, store = _manager(port)

        with caplog.at_level(logging.WARNING, logger="logeasy.capture.persistence"):
            assert manager.restore() == 0

        assert "not valid JSON" in caplog.text
        assert len(store) == 0

    def test_non_object_snapshot_is_ignored(self) -> None:
        port = InMemoryKeyValueStore()
        port.set(RECORDS_KEY, json.dumps(["r1"]))
        manager, _ = _manager(port)
        assert manager.restore() == 0

    def test_invalid_entries_are_skipped(self) -> None:
        port = InMemoryKeyValueStore()
        good = RequestRecord(request_id="good", url="https://bank.example/a", start_time=1000).to_json_dict()
        port.set(RECORDS_KEY, json.dumps({"good": good, "bad": {"url": 5}}))
        manager, store = _manager(port)

        assert manager.restore() == 1
        assert "good" in store
        assert "bad" not in store

    def test_restore_caps_to_capacity(self) -> None:
        port = InMemoryKeyValueStore()
        snapshot = {
            f"r{i}": RequestRecord(request_id=f"r{i}", url="https://bank.example/a", start_time=1000 + i).to_json_dict()
            for i in range(10)
        }
        port.set(RECORDS_KEY, json.dumps(snapshot))
        manager, store = _manager(port, max_records=4)

        manager.restore()

        assert len(store) == 4
        assert {r.request_id for r in store.snapshot()} == {"r6", "r7", "r8", "r9"}


class TestEnvInfo:
    def test_cache_and_load(self) -> None:
        port = InMemoryKeyValueStore()
        manager, _ = _manager(port)
        assert manager.cache_env_info({"environment": "hq", "version": "4.5"}) is True
        assert json.loads(port.get(ENV_INFO_KEY) or "{}") == {"environment": "hq", "version": "4.5"}
        assert manager.load_env_info() == {"environment": "hq", "version": "4.5"}

    def test_load_missing_or_malformed(self) -> None:
        port = InMemoryKeyValueStore()
        manager, _ = _manager(port)
        assert manager.load_env_info() is None
        port.set(ENV_INFO_KEY, "nope")
        assert manager.load_env_info() is None


# ---------------------------------------------------------------------------
# SQLite adapter
# ---------------------------------------------------------------------------


class TestSqliteKeyValueStore:
    def test_get_set_overwrite(self) -> None:
        kv = SqliteKeyValueStore(":memory:")
        assert kv.get("k") is None
        assert kv.set("k", "v1") is True
        assert kv.set("k", "v2") is True
        assert kv.get("k") == "v2"
        kv.close()

    def test_file_backed_survives_reopen(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "capture.db")
        first = SqliteKeyValueStore(db_path)
        first.set(RECORDS_KEY, "{}")
        first.close()

        second = SqliteKeyValueStore(db_path)
        assert second.get(RECORDS_KEY) == "{}"
        second.close()

    def test_empty_path_rejected(self) -> None:
        with pytest.raises(ValueError, match="STORAGE_DB_PATH is empty"):
            get_connection("")

    def test_errors_after_close_are_swallowed(self) -> None:
        kv = SqliteKeyValueStore(":memory:")
        kv.close()
        assert kv.set("k", "v") is False
        assert kv.get("k") is None

"""Durable key-value port and its adapters.

The capture core only needs ``get(key)`` and ``set(key, value)`` against string
values. ``SqliteKeyValueStore`` is the production adapter; ``InMemoryKeyValueStore``
backs tests and runs where no database path is configured.

All database operations use parameterized queries. Connections are opened once
per store with check_same_thread=False for async compatibility, and the schema
is auto-created via CREATE TABLE IF NOT EXISTS (idempotent).
"""

import logging
import sqlite3
from datetime import UTC, datetime
from typing import Protocol

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class KeyValuePort(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> bool: ...


class InMemoryKeyValueStore:
    """Dict-backed port. Data lives as long as the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Path to the database file. Pass ":memory:" for in-memory databases (tests).

    Raises:
        ValueError: If the path is empty.
    """
    if not db_path:
        msg = "Snapshot store not configured (STORAGE_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the key-value table if it doesn't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


class SqliteKeyValueStore:
    """Key-value port over a single SQLite table."""

    def __init__(self, db_path: str) -> None:
        self._conn = get_connection(db_path)
        init_schema(self._conn)

    def get(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error:
            logger.exception("Failed to read key '%s' from snapshot store", key)
            return None
        if row is None:
            return None
        value: str = row["value"]
        return value

    def set(self, key: str, value: str) -> bool:
        now = datetime.now(UTC).isoformat()
        try:
            self._conn.execute(
                """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                (key, value, now),
            )
            self._conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to write key '%s' to snapshot store", key)
            return False
        return True

    def close(self) -> None:
        self._conn.close()

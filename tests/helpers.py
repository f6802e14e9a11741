"""Test helpers shared across modules."""

from typing import Any

from logeasy.config import Settings


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, now: float = 1_700_000_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_settings(**overrides: Any) -> Settings:
    """Settings with test-friendly defaults (short debounce, no database)."""
    values: dict[str, Any] = {
        "storage_db_path": "",
        "flush_debounce_ms": 20,
        "log_search_url": "",
        "log_search_token": "",
    }
    values.update(overrides)
    return Settings(**values)

from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict

from logeasy.capture.models import DEFAULT_LOGIN_MARKER


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Durable snapshot store (empty string means in-memory only)
    storage_db_path: str = ""

    # Store bounds
    max_records: int = 1000
    flush_debounce_ms: int = 1000
    flush_max_wait_ms: int = 5000
    sweep_interval_seconds: int = 3600
    max_record_age_hours: int = 24

    # Capture correlation
    capture_match_window_ms: int = 30_000

    # Session summaries
    session_padding_minutes: int = 5
    correlation_header: str = "q2token"
    login_url_marker: str = DEFAULT_LOGIN_MARKER
    staging_pattern: str = r"staging|stage|temporary"
    route_pattern: str = r"cdn/deport/([^/]+)"

    # Log search API (optional, empty string means not configured)
    log_search_url: str = ""
    log_search_token: str = ""
    log_search_timeout_seconds: float = 30.0
    # Log viewer base URL for deep links (empty string means no links)
    log_viewer_url: str = ""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()

"""Shared pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import patch

import pytest

from logeasy.capture.models import LifecycleEvent, LifecyclePhase
from logeasy.config import Settings, get_settings
from tests.helpers import FakeClock, make_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's local .env can't change test behaviour.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Settings]:
    """Provide fixed settings and patch get_settings at every import site."""
    fake_settings = make_settings(
        log_search_url="http://logs.test",
        log_search_token="test-token",
        log_search_timeout_seconds=5.0,
        log_viewer_url="https://viewer.test",
    )
    with (
        patch("logeasy.config.get_settings", return_value=fake_settings),
        patch("logeasy.service.get_settings", return_value=fake_settings),
        patch("logeasy.cli.get_settings", return_value=fake_settings),
        patch("logeasy.logs.client.get_settings", return_value=fake_settings),
        patch("logeasy.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_event() -> Callable[..., LifecycleEvent]:
    """Factory for lifecycle events with sensible defaults."""

    def _make(
        phase: LifecyclePhase | str,
        request_id: str = "r1",
        url: str = "https://bank.example/accounts",
        time_stamp: float = 1000.0,
        **fields: Any,
    ) -> LifecycleEvent:
        return LifecycleEvent(
            request_id=request_id,
            phase=LifecyclePhase(phase),
            url=url,
            method=fields.pop("method", "GET"),
            time_stamp=time_stamp,
            **fields,
        )

    return _make

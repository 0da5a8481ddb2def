"""Shared test fixtures for the Fahrenheit test suite."""

import asyncio
import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from fahrenheit.audit.sink import InMemoryLogSink
from fahrenheit.memory.models import ObservationInput, TrustClass


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory for testing."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def mock_toml_files(test_config_dir: Path) -> Callable[[dict[str, str]], None]:
    """Factory fixture to create TOML files in the test config directory.

    Usage:
        def test_something(mock_toml_files):
            mock_toml_files({
                "default.toml": "app_name = 'test'",
                "development.toml": "debug = true",
            })
    """

    def _create_toml_files(files: dict[str, str]) -> None:
        for filename, content in files.items():
            toml_file = test_config_dir / filename
            toml_file.write_text(content)

    return _create_toml_files


class EnvOverrideContext:
    """Context manager for temporarily setting environment variables."""

    def __init__(self, overrides: dict[str, str]) -> None:
        self.overrides = overrides
        self.original_env: dict[str, str | None] = {}

    def __enter__(self) -> None:
        for key, value in self.overrides.items():
            self.original_env[key] = os.environ.get(key)
            os.environ[key] = value

    def __exit__(self, *args: Any) -> None:
        for key in self.overrides:
            if self.original_env[key] is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = self.original_env[key]


@pytest.fixture
def env_override() -> Generator[Callable[[dict[str, str]], EnvOverrideContext], None, None]:
    """Context manager for temporarily setting environment variables.

    Usage:
        def test_something(env_override):
            with env_override({"FAHRENHEIT_DEBUG": "true"}):
                # test code here
    """

    def _env_override(overrides: dict[str, str]) -> EnvOverrideContext:
        return EnvOverrideContext(overrides)

    yield _env_override


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Clear the settings cache before and after each test.

    This ensures test isolation for configuration tests.
    """
    from fahrenheit.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Clocks, sinks and agents
# =============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def log_sink() -> InMemoryLogSink:
    return InMemoryLogSink()


class FakeAgent:
    """Agent capability whose runs can be held open with asyncio.Events.

    Every invoke() call waits on the gate registered for its message, if any.
    """

    def __init__(self) -> None:
        self.invocations: list[tuple[str, str, str | None]] = []
        self.steered: list[tuple[str, str]] = []
        self.started: dict[str, asyncio.Event] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.reply: Callable[[str, str], str] = lambda _key, message: f"reply:{message}"

    def hold(self, message: str) -> asyncio.Event:
        """Keep the run for ``message`` open until the returned event is set."""
        self.gates[message] = asyncio.Event()
        self.started[message] = asyncio.Event()
        return self.gates[message]

    def fail_on(self, message: str, error: Exception) -> None:
        self.failures[message] = error

    async def invoke(
        self,
        session_key: str,
        message: str,
        *,
        correlation_id: str | None = None,
    ) -> str:
        self.invocations.append((session_key, message, correlation_id))
        if message in self.started:
            self.started[message].set()
        if message in self.gates:
            await self.gates[message].wait()
        if message in self.failures:
            raise self.failures[message]
        return self.reply(session_key, message)

    async def steer(
        self,
        session_key: str,
        message: str,
        *,
        correlation_id: str | None = None,
    ) -> None:
        self.steered.append((session_key, message))


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


# =============================================================================
# Observation fixtures
# =============================================================================


@pytest.fixture
def make_observation() -> Callable[..., ObservationInput]:
    """Factory for observation inputs with a valid partition."""

    def _make(**overrides: Any) -> ObservationInput:
        data: dict[str, Any] = {
            "project_id": "alpha",
            "group_id": "alpha-team",
            "session_key": "group:alpha-team:main",
            "source": "notion",
            "source_ref": "page-1",
            "summary": "Deployment progressed to staging.",
            "trust_class": TrustClass.TRUSTED,
            "confidence": 0.9,
        }
        data.update(overrides)
        return ObservationInput(**data)

    return _make

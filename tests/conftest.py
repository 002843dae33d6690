"""Shared pytest fixtures for drivesync tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from drivesync.core.config import BreakerConfig
from drivesync.reliability import CircuitBreaker, CircuitBreakerStore


class FakeClock:
    """Manually advanced timezone-aware clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock fixed at 2024-01-01 12:00 UTC."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Path of a not yet created breaker state file."""
    return tmp_path / "state" / "circuit_breaker_state.json"


@pytest.fixture
def store(state_file: Path) -> CircuitBreakerStore:
    """Create a breaker store in a temp directory."""
    return CircuitBreakerStore(state_file)


@pytest.fixture
def breaker(store: CircuitBreakerStore, clock: FakeClock) -> CircuitBreaker:
    """Create a breaker with default policies and the fake clock."""
    return CircuitBreaker(store, BreakerConfig(), clock=clock)


@pytest.fixture(autouse=True)
def reset_drivesync_logger() -> Generator[None, None, None]:
    """Remove handlers installed by setup_logging between tests."""
    yield
    root_logger = logging.getLogger("drivesync")
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.NOTSET)

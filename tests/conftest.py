"""Shared test fixtures: fake clocks and event builders.

Everything under test is in-memory, so no containers or network are needed.
Time-dependent components take injectable clocks; tests advance them
explicitly instead of sleeping.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from lookout.server.settings import _get_settings_cached

EPOCH = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


class FakeClock:
    """Wall clock returning an aware datetime that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeTimer:
    """Monotonic seconds counter for breakers and health windows."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def raw_event(
    session_id: str = "s1",
    event_type: str = "task_started",
    status: str = "started",
    **fields: Any,
) -> dict[str, Any]:
    """Wire-shaped event payload, as a producer would submit it."""
    event: dict[str, Any] = {
        "timestamp": EPOCH.isoformat(),
        "session_id": session_id,
        "event_type": event_type,
        "status": status,
    }
    event.update(fields)
    return event


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture(autouse=True)
def _isolated_settings() -> Iterator[None]:
    """Each test sees a fresh settings object built from its own env."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("LOOKOUT_")}
    _get_settings_cached.cache_clear()
    yield
    for key in [k for k in os.environ if k.startswith("LOOKOUT_")]:
        del os.environ[key]
    os.environ.update(saved)
    _get_settings_cached.cache_clear()


@pytest.fixture
def production_env() -> None:
    _set_env("LOOKOUT_ENVIRONMENT", "production")


@pytest.fixture
def make_raw():
    """Factory for wire-shaped event payloads (see ``raw_event``)."""
    return raw_event

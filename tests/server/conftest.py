"""Component fixtures for server tests, all wired to fake clocks."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from lookout.server.app import app
from lookout.server.health.monitor import HealthMonitor
from lookout.server.models.events import parse_event
from lookout.server.resilience.policy import ErrorPolicy
from lookout.server.service import ObservabilityService
from lookout.server.store.memory import MemoryEventStore
from lookout.server.streaming.broadcaster import Broadcaster


@pytest.fixture
def store(clock) -> MemoryEventStore:
    return MemoryEventStore(max_events_per_session=1000, session_timeout=timedelta(hours=24), clock=clock)


@pytest.fixture
def add(store, make_raw):
    """Validate and append a raw event to ``store``; returns the stored record."""

    def _add(session_id: str = "s1", event_type: str = "task_started", status: str = "started", **fields):
        event = parse_event(make_raw(session_id, event_type, status, **fields))
        return store.add_event(session_id, event)

    return _add


@pytest.fixture
def broadcaster(clock) -> Broadcaster:
    return Broadcaster(clock=clock)


@pytest.fixture
def monitor(timer) -> HealthMonitor:
    return HealthMonitor(memory_probe=lambda: 100.0, clock=timer)


class SleepRecorder:
    """Stands in for ``asyncio.sleep``; records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def policy(monitor, sleeps, timer) -> ErrorPolicy:
    return ErrorPolicy(monitor, sleep=sleeps, clock=timer, rng=lambda: 0.0)


@pytest.fixture
def service(store, broadcaster, monitor, policy) -> ObservabilityService:
    return ObservabilityService(store=store, broadcaster=broadcaster, monitor=monitor, policy=policy)


@pytest.fixture
async def client(service: ObservabilityService) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with the fake-clock service.

    The app lifespan does NOT run under ``ASGITransport``, so the service is
    pre-set on ``app.state``.
    """
    app.state.service = service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.service = None

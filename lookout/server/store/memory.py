"""In-memory event store.

Each session owns a ``deque(maxlen=max_events_per_session)`` that acts as a
circular buffer: once full, appending evicts the oldest event.  Session
records and their histories are created and removed together.

All methods are synchronous.  Under the single event loop the server runs
on, a mutation (append + metric update + active-operation update) therefore
completes without interleaving with other coroutines touching the same
session.
"""

from __future__ import annotations

import uuid
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from lookout.server.models.enums import EventCategory, EventStatus, EventType, SessionStatus
from lookout.server.models.events import EventFilter, EventIn, StoredEvent
from lookout.server.models.session import DEFAULT_ROOT_TASK, ActiveOperation, Session


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _root_task_hint(event: EventIn) -> str:
    """Pick a root task description for a session created implicitly."""
    task_name = event.details.get("task_name")
    if task_name:
        return str(task_name)
    if event.category is EventCategory.TASK and event.details.get("name"):
        return str(event.details["name"])
    return DEFAULT_ROOT_TASK


class MemoryEventStore:
    """Dict-of-deques implementation of the ``EventStore`` protocol."""

    def __init__(
        self,
        *,
        max_events_per_session: int = 1000,
        session_timeout: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._events: dict[str, deque[StoredEvent]] = {}
        self._max_events = max_events_per_session
        self._timeout = session_timeout
        self._clock = clock

    # -- Sessions --------------------------------------------------------------

    def create_session(self, session_id: str, root_task: str | None = None) -> Session:
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing

        session = Session(id=session_id, created_at=self._clock(), root_task=root_task or DEFAULT_ROOT_TASK)
        self._sessions[session_id] = session
        self._events[session_id] = deque(maxlen=self._max_events)
        logger.info("Session created: {} ({})", session_id, session.root_task)
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def active_sessions(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.status == SessionStatus.ACTIVE]

    def event_count(self, session_id: str) -> int:
        events = self._events.get(session_id)
        return len(events) if events is not None else 0

    # -- Events ----------------------------------------------------------------

    def add_event(self, session_id: str, event: EventIn) -> StoredEvent:
        session = self._sessions.get(session_id)
        if session is None:
            session = self.create_session(session_id, _root_task_hint(event))

        # Only producer fields carry over; a re-fed stored record gets a fresh id.
        data = event.model_dump(include=set(EventIn.model_fields), exclude={"session_id"})
        stored = StoredEvent(**data, session_id=session_id, id=uuid.uuid4().hex)

        self._events[session_id].append(stored)
        self._apply(session, stored)
        return stored

    def get_session_events(self, session_id: str, event_filter: EventFilter | None = None) -> list[StoredEvent]:
        events = self._events.get(session_id)
        if not events:
            return []

        selected = list(events)
        if event_filter is None:
            return selected

        if event_filter.event_types:
            selected = [e for e in selected if e.event_type in event_filter.event_types]
        if event_filter.status is not None:
            selected = [e for e in selected if e.status == event_filter.status]
        if event_filter.since is not None:
            selected = [e for e in selected if e.timestamp >= event_filter.since]
        if event_filter.limit is not None:
            selected = selected[-event_filter.limit :]
        return selected

    # -- Expiry ----------------------------------------------------------------

    def expire(self, now: datetime | None = None) -> list[str]:
        """Remove sessions whose age exceeds the timeout, history included.

        Age is the only criterion; a completed session is kept until it ages
        out like any other.
        """
        now = now or self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.created_at > self._timeout]
        for session_id in expired:
            del self._sessions[session_id]
            self._events.pop(session_id, None)
            logger.info("Session expired: {}", session_id)
        if expired:
            logger.info("Expired {} sessions", len(expired))
        return expired

    def stats(self) -> dict[str, Any]:
        return {
            "total_sessions": len(self._sessions),
            "active_sessions": len(self.active_sessions()),
            "total_events": sum(len(events) for events in self._events.values()),
        }

    # -- Derived state ---------------------------------------------------------

    def _apply(self, session: Session, event: StoredEvent) -> None:
        metrics = session.metrics
        if event.status == EventStatus.SUCCESS:
            if event.category is EventCategory.TOOL:
                metrics.tools_used += 1
            elif event.category is EventCategory.MCP:
                metrics.protocol_calls += 1
        if event.status == EventStatus.ERROR:
            metrics.error_count += 1

        self._track_operation(session, event)

        # Best-effort: unrelated concurrent tasks sharing a session can race
        # this, and no ordering exists across branches of one session.
        match event.event_type:
            case EventType.TASK_STARTED:
                session.status = SessionStatus.ACTIVE
                session.ended_at = None
            case EventType.TASK_COMPLETE:
                if not session.active_operations:
                    self._finish(session, SessionStatus.COMPLETED)
            case EventType.TASK_FAILED:
                self._finish(session, SessionStatus.FAILED)

    def _track_operation(self, session: Session, event: StoredEvent) -> None:
        operations = session.active_operations

        if event.status == EventStatus.STARTED:
            operations[event.id] = _operation_from(event, event.id)
        elif event.status == EventStatus.RUNNING:
            key = _match_operation(operations, event) or event.id
            operations[key] = _operation_from(event, key, started=operations.get(key))
        elif event.status.is_terminal:
            operations.pop(event.id, None)
            key = _match_operation(operations, event)
            if key is not None:
                del operations[key]

    def _finish(self, session: Session, status: SessionStatus) -> None:
        session.status = status
        session.ended_at = self._clock()
        session.metrics.total_duration_ms = (session.ended_at - session.created_at).total_seconds() * 1000
        logger.info("Session {}: {}", status.value, session.id)


def _operation_from(event: StoredEvent, key: str, started: ActiveOperation | None = None) -> ActiveOperation:
    return ActiveOperation(
        id=key,
        event_type=event.event_type,
        name=event.name,
        correlation_id=event.correlation_id or (started.correlation_id if started else None),
        started=started.started if started else event.timestamp,
    )


def _match_operation(operations: dict[str, ActiveOperation], event: StoredEvent) -> str | None:
    """Find the in-flight operation *event* continues or concludes.

    Matched by ``correlation_id`` first, then by the most recent operation of
    the same category and name.  An event without an explicit name matches the
    most recent operation of its category.
    """
    if event.correlation_id:
        for key, op in reversed(operations.items()):
            if op.correlation_id == event.correlation_id:
                return key

    named = bool(event.details.get("name"))
    for key, op in reversed(operations.items()):
        if op.category is not event.category:
            continue
        if not named or op.name == event.name:
            return key
    return None

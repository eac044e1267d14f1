"""Event store interface.

The store owns every session record and its bounded event history.  Lookups
for unknown sessions return ``None`` / empty results; surfacing a not-found
condition is the caller's job.  The store never retries -- that belongs to
the error policy at the service boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from lookout.server.models.events import EventFilter, EventIn, StoredEvent
from lookout.server.models.session import Session


@runtime_checkable
class EventStore(Protocol):
    """Protocol for session / event storage backends."""

    def create_session(self, session_id: str, root_task: str | None = None) -> Session:
        """Create a session, or return the existing one unchanged."""
        ...

    def get_session(self, session_id: str) -> Session | None:
        ...

    def add_event(self, session_id: str, event: EventIn) -> StoredEvent:
        """Append an event, creating the session if needed."""
        ...

    def get_session_events(self, session_id: str, event_filter: EventFilter | None = None) -> list[StoredEvent]:
        """Events in insertion order.  Unknown session -> ``[]``."""
        ...

    def expire(self, now: datetime | None = None) -> list[str]:
        """Remove sessions older than the timeout.  Returns removed ids."""
        ...

    def list_sessions(self) -> list[Session]:
        ...

    def stats(self) -> dict[str, Any]:
        ...

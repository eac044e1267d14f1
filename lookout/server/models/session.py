"""Session models.

Sessions are mutable and owned exclusively by the event store.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from lookout.server.models.enums import EventCategory, EventType, SessionStatus

DEFAULT_ROOT_TASK = "Unknown Task"


class SessionMetrics(BaseModel):
    tools_used: int = 0
    protocol_calls: int = 0
    error_count: int = 0
    total_duration_ms: float = 0


class ActiveOperation(BaseModel):
    """An in-flight operation, keyed by the id of the event that opened it."""

    id: str
    event_type: EventType
    name: str
    correlation_id: str | None = None
    started: datetime

    @property
    def category(self) -> EventCategory:
        return self.event_type.category


class Session(BaseModel):
    """Per-session state derived from the events seen so far."""

    id: str
    created_at: datetime
    ended_at: datetime | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    root_task: str = DEFAULT_ROOT_TASK
    active_operations: dict[str, ActiveOperation] = Field(default_factory=dict)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)


class DisplaySettings(BaseModel):
    """Per-session display preferences used as defaults for streams and trees."""

    show_timings: bool = True
    collapse_fast_ops: bool = False
    threshold_slow_ms: float | None = Field(default=None, ge=0)
    max_tree_depth: int = Field(default=5, ge=0)
    highlight_errors: bool = True

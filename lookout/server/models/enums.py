"""Shared enumerations used across the observability server."""

from __future__ import annotations

from enum import StrEnum

# ErrorKind lives with the exception taxonomy; re-exported here with the other enums.
from lookout.server.errors import ErrorKind  # noqa: F401

# -- Events ------------------------------------------------------------------


class EventType(StrEnum):
    """Lifecycle event types reported by producers."""

    # Task
    TASK_STARTED = "task_started"
    TASK_PROGRESS = "task_progress"
    TASK_COMPLETE = "task_complete"
    TASK_FAILED = "task_failed"

    # Tool
    TOOL_PRE_CALL = "tool_pre_call"
    TOOL_POST_CALL = "tool_post_call"
    TOOL_ERROR = "tool_error"

    # Protocol (MCP) calls
    MCP_REQUEST = "mcp_request"
    MCP_RESPONSE = "mcp_response"
    MCP_ERROR = "mcp_error"

    # Subagent
    SUBAGENT_SPAWN = "subagent_spawn"
    SUBAGENT_COMPLETE = "subagent_complete"
    SUBAGENT_FAILED = "subagent_failed"

    @property
    def category(self) -> EventCategory:
        return EventCategory(self.value.split("_", 1)[0])

    @property
    def is_failure(self) -> bool:
        return self in _FAILURE_TYPES


class EventCategory(StrEnum):
    """Event type prefix; drives indentation and counters."""

    TASK = "task"
    TOOL = "tool"
    MCP = "mcp"
    SUBAGENT = "subagent"


_FAILURE_TYPES = frozenset({
    EventType.TASK_FAILED,
    EventType.TOOL_ERROR,
    EventType.MCP_ERROR,
    EventType.SUBAGENT_FAILED,
})


class EventStatus(StrEnum):
    STARTED = "started"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.SUCCESS, EventStatus.ERROR, EventStatus.TIMEOUT)


# -- Session -----------------------------------------------------------------


class SessionStatus(StrEnum):
    """Derived session status; see ``MemoryEventStore.add_event``."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# -- Streaming ---------------------------------------------------------------


class OutputFormat(StrEnum):
    """Per-stream output mode."""

    TREE = "tree"
    JSON = "json"
    PLAIN = "plain"


class DisplayAction(StrEnum):
    APPEND = "append"
    UPDATE = "update"
    FINALIZE = "finalize"
    ALERT = "alert"


class OutputKind(StrEnum):
    EVENT = "event"
    ALERT = "alert"


# -- Export ------------------------------------------------------------------


class ExportFormat(StrEnum):
    JSON = "json"
    TEXT = "text"
    TREE = "tree"


# -- Health ------------------------------------------------------------------


class HealthState(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertType(StrEnum):
    SLOW_REQUEST = "slow_request"
    HIGH_ERROR_RATE = "high_error_rate"
    MEMORY_HIGH = "memory_high"
    MEMORY_CRITICAL = "memory_critical"


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# -- Resilience --------------------------------------------------------------


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

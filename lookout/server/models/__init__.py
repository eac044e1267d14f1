"""Data models for the observability server."""

from lookout.server.models.activity import ActivityTree, DisplayDirective, FormattedLine, TreeNode
from lookout.server.models.api import (
    DisplaySettingsUpdate,
    ExportResponse,
    LogEventRequest,
    LogEventResponse,
    SessionCreate,
    SessionSummary,
    StreamStart,
    StreamStarted,
)
from lookout.server.models.enums import (
    AlertSeverity,
    AlertType,
    CircuitState,
    DisplayAction,
    ErrorKind,
    EventCategory,
    EventStatus,
    EventType,
    ExportFormat,
    HealthState,
    OutputFormat,
    OutputKind,
    SessionStatus,
)
from lookout.server.models.events import (
    DisplayInfo,
    EventFilter,
    EventIn,
    StoredEvent,
    new_event,
    parse_event,
    validate_event,
)
from lookout.server.models.health import Alert, DetailedHealthReport, HealthReport
from lookout.server.models.session import ActiveOperation, DisplaySettings, Session, SessionMetrics
from lookout.server.models.stream import StreamInfo, StreamOptions, StreamOutput

__all__ = [
    "ActiveOperation",
    "ActivityTree",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "CircuitState",
    "DetailedHealthReport",
    "DisplayAction",
    "DisplayDirective",
    "DisplayInfo",
    "DisplaySettings",
    "DisplaySettingsUpdate",
    "ErrorKind",
    "EventCategory",
    "EventFilter",
    "EventIn",
    "EventStatus",
    "EventType",
    "ExportFormat",
    "ExportResponse",
    "FormattedLine",
    "HealthReport",
    "HealthState",
    "LogEventRequest",
    "LogEventResponse",
    "OutputFormat",
    "OutputKind",
    "Session",
    "SessionCreate",
    "SessionMetrics",
    "SessionStatus",
    "SessionSummary",
    "StoredEvent",
    "StreamInfo",
    "StreamOptions",
    "StreamOutput",
    "StreamStart",
    "StreamStarted",
    "TreeNode",
    "new_event",
    "parse_event",
    "validate_event",
]

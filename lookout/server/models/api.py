"""API request / response schemas.

These thin schemas sit between HTTP and the service.  Domain models from
``events.py`` / ``session.py`` / ``stream.py`` are reused where the shapes
match.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from lookout.server.models.enums import ExportFormat, SessionStatus
from lookout.server.models.session import DisplaySettings
from lookout.server.models.stream import StreamOptions

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class LogEventRequest(BaseModel):
    """Raw event payload.  Validated by the service, not by FastAPI."""

    event: dict[str, Any]


class LogEventResponse(BaseModel):
    event_id: str
    session_id: str


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionCreate(BaseModel):
    session_id: str = Field(min_length=1)
    root_task: str | None = None


class SessionSummary(BaseModel):
    session_id: str
    status: SessionStatus
    root_task: str
    event_count: int


class DisplaySettingsUpdate(BaseModel):
    settings: DisplaySettings


class ExportResponse(BaseModel):
    session_id: str
    format: ExportFormat
    data: str


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


class StreamStart(BaseModel):
    session_id: str = Field(min_length=1)
    options: StreamOptions | None = None


class StreamStarted(BaseModel):
    stream_id: str
    session_id: str

"""Stream (subscription) models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lookout.server.models.activity import FormattedLine
from lookout.server.models.enums import DisplayAction, OutputFormat, OutputKind
from lookout.server.models.events import StoredEvent


class StreamOptions(BaseModel):
    """Per-subscriber formatting policy."""

    output_format: OutputFormat = OutputFormat.TREE
    show_progress: bool = True
    collapse_completed: bool = False
    show_timings: bool = True
    highlight_errors: bool = True
    slow_threshold_ms: float | None = Field(default=None, ge=0, description="Overrides the engine default.")


class StreamOutput(BaseModel):
    """One delivery to one stream."""

    stream_id: str
    session_id: str
    kind: OutputKind = OutputKind.EVENT
    display_action: DisplayAction
    output: FormattedLine | dict[str, Any] | str
    event: StoredEvent


class StreamInfo(BaseModel):
    stream_id: str
    session_id: str
    started_at: datetime
    stopped_at: datetime | None = None
    is_active: bool
    events_sent: int
    options: StreamOptions

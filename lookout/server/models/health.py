"""Health report models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lookout.server.models.enums import AlertSeverity, AlertType, HealthState


class Alert(BaseModel):
    type: AlertType
    severity: AlertSeverity
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class MemoryReport(BaseModel):
    current_mb: float
    peak_mb: float


class RequestReport(BaseModel):
    total: int
    errors: int
    error_rate: float
    requests_per_minute: int
    avg_response_time_ms: float


class EventReport(BaseModel):
    total: int
    events_per_minute: int


class SessionGauges(BaseModel):
    total: int = 0
    active: int = 0
    peak_concurrent: int = 0


class HealthReport(BaseModel):
    status: HealthState
    uptime_ms: int
    uptime_human: str
    memory: MemoryReport
    requests: RequestReport
    events: EventReport
    sessions: SessionGauges


class OperationStats(BaseModel):
    count: int = 0
    errors: int = 0
    avg_time_ms: float = 0


class DetailedHealthReport(HealthReport):
    method_breakdown: dict[str, OperationStats] = Field(default_factory=dict)
    event_type_breakdown: dict[str, int] = Field(default_factory=dict)
    recent_errors: list[dict[str, Any]] = Field(default_factory=list)
    response_time_percentiles: dict[str, float] = Field(default_factory=dict)
    alerts: list[Alert] = Field(default_factory=list)
    components: dict[str, Any] = Field(default_factory=dict)

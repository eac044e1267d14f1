"""Session endpoints (RPC-style).

Thin HTTP adapter -- delegates to the service.  ``ServiceError``s raised by
the service are mapped to status codes by the app-level exception handler.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from lookout.server.deps import Service
from lookout.server.models.activity import ActivityTree
from lookout.server.models.api import DisplaySettingsUpdate, ExportResponse, SessionCreate, SessionSummary
from lookout.server.models.enums import EventStatus, EventType, ExportFormat
from lookout.server.models.events import EventFilter, StoredEvent
from lookout.server.models.session import DisplaySettings, Session

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/list", response_model=list[SessionSummary])
async def handle_list_sessions(service: Service) -> list[SessionSummary]:
    return await service.list_sessions()


@router.post("/create", response_model=Session)
async def handle_create_session(body: SessionCreate, service: Service) -> Session:
    return await service.create_session(body.session_id, body.root_task)


@router.get("/{session_id}/get", response_model=Session)
async def handle_get_session(session_id: str, service: Service) -> Session:
    return await service.get_session(session_id)


@router.get("/{session_id}/events", response_model=list[StoredEvent])
async def handle_get_session_events(
    session_id: str,
    service: Service,
    event_type: list[EventType] | None = Query(None, description="Keep only these event types."),
    status: EventStatus | None = Query(None),
    since: datetime | None = Query(None, description="Keep events at or after this timestamp."),
    limit: int | None = Query(None, ge=1, description="Keep only the most recent N events."),
) -> list[StoredEvent]:
    event_filter = EventFilter(
        event_types=set(event_type) if event_type else None,
        status=status,
        since=since,
        limit=limit,
    )
    return await service.get_session_events(session_id, event_filter)


@router.get("/{session_id}/tree", response_model=ActivityTree)
async def handle_get_tree(
    session_id: str,
    service: Service,
    include_completed: bool = Query(True),
    max_depth: int | None = Query(None, ge=0, description="Defaults to the session's display settings."),
) -> ActivityTree:
    return await service.build_activity_tree(session_id, include_completed=include_completed, max_depth=max_depth)


@router.get("/{session_id}/export", response_model=ExportResponse)
async def handle_export_session(
    session_id: str,
    service: Service,
    format: ExportFormat = Query(ExportFormat.JSON),  # noqa: A002
) -> ExportResponse:
    data = await service.export_session(session_id, format)
    return ExportResponse(session_id=session_id, format=format, data=data)


@router.post("/{session_id}/display", response_model=DisplaySettings)
async def handle_configure_display(session_id: str, body: DisplaySettingsUpdate, service: Service) -> DisplaySettings:
    return await service.configure_display(session_id, body.settings)

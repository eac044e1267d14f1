"""Event ingestion endpoint (RPC-style).

Thin HTTP adapter -- delegates to the service.  Validation happens in the
service gate, so the request body is accepted as a plain object.
"""

from __future__ import annotations

from fastapi import APIRouter

from lookout.server.deps import Service
from lookout.server.models.api import LogEventRequest, LogEventResponse

router = APIRouter(prefix="/events", tags=["events"])


@router.post("/log", response_model=LogEventResponse)
async def handle_log_event(body: LogEventRequest, service: Service) -> LogEventResponse:
    stored = await service.add_event(body.event)
    return LogEventResponse(event_id=stored.id, session_id=stored.session_id)

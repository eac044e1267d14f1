"""Stream endpoints (RPC-style) and the SSE feed.

Each SSE connection drains one stream's queue.  The stream is stopped when
the client disconnects, so an abandoned connection never keeps receiving.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from lookout.server.deps import Service
from lookout.server.models.api import StreamStart, StreamStarted
from lookout.server.models.stream import StreamInfo

router = APIRouter(prefix="/streams", tags=["streams"])


@router.post("/start", response_model=StreamStarted)
async def handle_start_stream(body: StreamStart, service: Service) -> StreamStarted:
    stream_id = await service.start_stream(body.session_id, body.options)
    return StreamStarted(stream_id=stream_id, session_id=body.session_id)


@router.get("/{stream_id}/get", response_model=StreamInfo)
async def handle_get_stream(stream_id: str, service: Service) -> StreamInfo:
    return await service.get_stream_info(stream_id)


@router.post("/{stream_id}/stop", response_model=StreamInfo)
async def handle_stop_stream(stream_id: str, service: Service) -> StreamInfo:
    return await service.stop_stream(stream_id)


@router.get("/{stream_id}/events")
async def handle_stream_events(stream_id: str, service: Service) -> EventSourceResponse:
    # Resolve first so an unknown id is a 404, not an empty feed.
    await service.get_stream_info(stream_id)

    async def event_generator() -> AsyncIterator[dict[str, Any]]:
        try:
            async for output in service.listen(stream_id):
                yield {
                    "id": output.event.id,
                    "event": output.kind.value,
                    "data": json.dumps(output.model_dump(mode="json")),
                }
        finally:
            service.broadcaster.stop_stream(stream_id)

    return EventSourceResponse(event_generator())

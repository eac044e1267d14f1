"""FastAPI dependency injection for the observability service.

Usage in route handlers::

    @router.get("/{session_id}/get")
    async def handle_get_session(session_id: str, service: Service) -> Session:
        ...

The dependency raises HTTP 503 if the lifespan has not initialised the
service yet.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from lookout.server.service import ObservabilityService


def get_service(request: Request) -> ObservabilityService:
    service: ObservabilityService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Observability service not initialised.",
        )
    return service


# -- Annotated type aliases for concise route signatures ---------------------

Service = Annotated[ObservabilityService, Depends(get_service)]
"""Annotated dependency: the process-wide observability service."""

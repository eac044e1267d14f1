"""Health endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from lookout.server.deps import Service

router = APIRouter(tags=["health"])


@router.get("/health")
async def handle_health(
    service: Service,
    detailed: bool = Query(False, description="Include breakdowns, percentiles, alerts and component stats."),
) -> dict[str, Any]:
    report = await service.get_health_status(detailed)
    return report.model_dump(mode="json")

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from loguru import logger
from sse_starlette.sse import AppStatus

from lookout.server.errors import LookoutError, ServiceError
from lookout.server.log import install_fault_handlers, setup_logging
from lookout.server.models.enums import ErrorKind
from lookout.server.resilience.policy import transform_error
from lookout.server.service import ObservabilityService
from lookout.server.settings import get_settings

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---------------------------------------------------------------------------
# Background maintenance
# ---------------------------------------------------------------------------


async def _every(interval: float, name: str, job: Callable[[], object]) -> None:
    """Run *job* every *interval* seconds until cancelled.  A failing run is logged and skipped."""
    while True:
        await asyncio.sleep(interval)
        try:
            job()
        except Exception:
            logger.opt(exception=True).error("Maintenance job {} failed", name)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)
    install_fault_handlers()

    logger.info(
        "Lookout starting (host={}, port={}, environment={})",
        settings.host,
        settings.port,
        settings.environment,
    )

    service = ObservabilityService.from_settings(settings)
    _app.state.service = service

    # Let SSE streams end when their stream is stopped at shutdown instead of
    # being cut immediately.
    AppStatus.disable_automatic_graceful_drain()

    tasks = [
        asyncio.create_task(
            _every(settings.session_sweep_interval, "expire_sessions", service.expire_sessions),
            name="expire_sessions",
        ),
        asyncio.create_task(
            _every(settings.stream_cleanup_interval, "cleanup_streams", service.cleanup_streams),
            name="cleanup_streams",
        ),
        asyncio.create_task(
            _every(settings.health_check_interval, "health_check", service.run_health_check),
            name="health_check",
        ),
    ]
    logger.info("Maintenance loops started ({})", ", ".join(t.get_name() for t in tasks))

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Lookout shutting down")

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # Stopping every stream ends its SSE generator.
    service.shutdown()
    AppStatus.should_exit = True
    logger.info("SSE: signalled streams to close")


app = FastAPI(title="Lookout", lifespan=lifespan)


@app.exception_handler(LookoutError)
async def handle_lookout_error(_request: Request, exc: LookoutError) -> JSONResponse:
    error = exc if isinstance(exc, ServiceError) else transform_error(exc, production=get_settings().is_production)
    return JSONResponse(status_code=_STATUS_BY_KIND[error.kind], content=error.to_dict())


# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")

from lookout.server.routers.events import router as events_router  # noqa: E402
from lookout.server.routers.health import router as health_router  # noqa: E402
from lookout.server.routers.sessions import router as sessions_router  # noqa: E402
from lookout.server.routers.streams import router as streams_router  # noqa: E402

api.include_router(events_router)
api.include_router(sessions_router)
api.include_router(streams_router)
api.include_router(health_router)

app.include_router(api)

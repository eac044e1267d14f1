"""Observability service facade.

``ObservabilityService`` is a process-level singleton initialised in the app
lifespan.  It owns the four core components and routes every externally
invoked operation through the ``ErrorPolicy``:

- **Store**: sessions and their bounded event histories
- **Broadcaster**: live streams with replay
- **HealthMonitor**: latency / error / memory figures and alerts
- **ErrorPolicy**: timeout, retry, circuit breaker, error classification

Public coroutines raise ``ServiceError`` only.  The component calls behind
them are synchronous, so a single operation never interleaves with another
coroutine mid-mutation.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from lookout.server.activity.export import export_session
from lookout.server.activity.tree import build_activity_tree
from lookout.server.errors import NotFoundError, ValidationError
from lookout.server.health.monitor import HealthMonitor
from lookout.server.models.api import SessionSummary
from lookout.server.models.enums import ExportFormat
from lookout.server.models.events import EventFilter, StoredEvent, parse_event
from lookout.server.models.session import DisplaySettings
from lookout.server.models.stream import StreamOptions
from lookout.server.resilience.policy import ErrorPolicy
from lookout.server.store.memory import MemoryEventStore
from lookout.server.streaming.broadcaster import Broadcaster, Sink

if TYPE_CHECKING:
    from lookout.server.models.activity import ActivityTree
    from lookout.server.models.health import HealthReport
    from lookout.server.models.session import Session
    from lookout.server.models.stream import StreamInfo, StreamOutput
    from lookout.server.settings import LookoutSettings
    from lookout.server.store.base import EventStore


class ObservabilityService:
    def __init__(
        self,
        *,
        store: EventStore | None = None,
        broadcaster: Broadcaster | None = None,
        monitor: HealthMonitor | None = None,
        policy: ErrorPolicy | None = None,
        operation_timeout: float | None = 30.0,
        log_event_retries: int = 2,
    ) -> None:
        self.store: EventStore = store or MemoryEventStore()
        self.broadcaster = broadcaster or Broadcaster()
        self.monitor = monitor or HealthMonitor()
        self.policy = policy or ErrorPolicy(self.monitor)
        self._timeout = operation_timeout
        self._log_event_retries = log_event_retries
        self._display: dict[str, DisplaySettings] = {}

    @classmethod
    def from_settings(cls, settings: LookoutSettings) -> ObservabilityService:
        monitor = HealthMonitor(
            max_memory_mb=settings.max_memory_mb,
            max_response_time_ms=settings.max_response_time_ms,
            max_error_rate=settings.max_error_rate,
            metrics_retention=settings.metrics_retention,
        )
        return cls(
            store=MemoryEventStore(
                max_events_per_session=settings.max_events_per_session,
                session_timeout=settings.session_timeout,
            ),
            broadcaster=Broadcaster(
                slow_threshold_ms=settings.slow_threshold_ms,
                replay_buffer_size=settings.replay_buffer_size,
                replay_count=settings.replay_count,
                queue_size=settings.stream_queue_size,
                retention=settings.stream_retention,
            ),
            monitor=monitor,
            policy=ErrorPolicy(
                monitor,
                production=settings.is_production,
                breaker_threshold=settings.breaker_failure_threshold,
                breaker_cooldown=settings.breaker_cooldown_seconds,
            ),
            operation_timeout=settings.operation_timeout_seconds,
            log_event_retries=settings.log_event_retries,
        )

    # -- Events ----------------------------------------------------------------

    async def add_event(self, raw: Any) -> StoredEvent:
        """Validate, store and broadcast one event."""
        return await self._run(
            self._log_event,
            raw,
            context="log_event",
            retries=self._log_event_retries,
            circuit_breaker=True,
        )

    async def get_session_events(self, session_id: str, event_filter: EventFilter | None = None) -> list[StoredEvent]:
        return await self._run(self.store.get_session_events, session_id, event_filter, context="get_session_events")

    # -- Sessions --------------------------------------------------------------

    async def create_session(self, session_id: str, root_task: str | None = None) -> Session:
        return await self._run(self._create_session, session_id, root_task, context="create_session")

    async def get_session(self, session_id: str) -> Session:
        return await self._run(self._require_session, session_id, context="get_session")

    async def list_sessions(self) -> list[SessionSummary]:
        return await self._run(self._list_sessions, context="list_sessions")

    async def build_activity_tree(
        self,
        session_id: str,
        *,
        include_completed: bool = True,
        max_depth: int | None = None,
    ) -> ActivityTree:
        """Tree for *session_id*; ``max_depth`` defaults to the session's display settings."""
        return await self._run(
            self._build_tree,
            session_id,
            include_completed,
            max_depth,
            context="build_activity_tree",
        )

    async def export_session(self, session_id: str, fmt: ExportFormat | str = ExportFormat.JSON) -> str:
        return await self._run(self._export, session_id, fmt, context="export_session")

    async def configure_display(self, session_id: str, settings: DisplaySettings) -> DisplaySettings:
        return await self._run(self._configure_display, session_id, settings, context="configure_display")

    def display_settings(self, session_id: str) -> DisplaySettings:
        return self._display.get(session_id) or DisplaySettings()

    # -- Streams ---------------------------------------------------------------

    async def start_stream(
        self,
        session_id: str,
        options: StreamOptions | None = None,
        sink: Sink | None = None,
    ) -> str:
        """Start a stream, creating the session if needed.  Returns the stream id."""
        return await self._run(self._start_stream, session_id, options, sink, context="start_stream")

    async def stop_stream(self, stream_id: str) -> StreamInfo:
        return await self._run(self._stop_stream, stream_id, context="stop_stream")

    async def get_stream_info(self, stream_id: str) -> StreamInfo:
        return await self._run(self._require_stream, stream_id, context="get_stream_info")

    def listen(self, stream_id: str) -> AsyncIterator[StreamOutput]:
        return self.broadcaster.listen(stream_id)

    # -- Health ----------------------------------------------------------------

    async def get_health_status(self, detailed: bool = False) -> HealthReport:
        return await self._run(self._health, detailed, context="get_health_status")

    # -- Maintenance -----------------------------------------------------------

    def expire_sessions(self) -> list[str]:
        expired = self.store.expire()
        for session_id in expired:
            self._display.pop(session_id, None)
            self.broadcaster.forget_session(session_id)
        self.refresh_session_gauges()
        return expired

    def cleanup_streams(self) -> int:
        return self.broadcaster.cleanup()

    def refresh_session_gauges(self) -> None:
        stats = self.store.stats()
        self.monitor.record_sessions(stats["total_sessions"], stats["active_sessions"])

    def run_health_check(self) -> HealthReport:
        self.refresh_session_gauges()
        return self.monitor.check()

    def shutdown(self) -> int:
        """Stop every active stream so listeners drain and exit."""
        stopped = 0
        for session in self.store.list_sessions():
            for stream_id in self.broadcaster.session_stream_ids(session.id):
                self.broadcaster.stop_stream(stream_id)
                stopped += 1
        logger.info("Service shut down ({} streams stopped)", stopped)
        return stopped

    # -- Internals -------------------------------------------------------------

    async def _run(self, fn: Callable[..., Any], *args: Any, context: str, **options: Any) -> Any:
        options.setdefault("timeout", self._timeout)
        return await self.policy.call(fn, *args, context=context, **options)

    def _log_event(self, raw: Any) -> StoredEvent:
        start = time.perf_counter()
        event = parse_event(raw)
        stored = self.store.add_event(event.session_id, event)
        self.broadcaster.broadcast_event(stored.session_id, stored)
        self.monitor.record_event(stored.event_type.value, (time.perf_counter() - start) * 1000)
        logger.debug("Event logged: {} {} ({})", stored.session_id, stored.event_type, stored.status)
        return stored

    def _create_session(self, session_id: str, root_task: str | None) -> Session:
        if not session_id or not session_id.strip():
            msg = "session_id must be a non-empty string"
            raise ValidationError(msg)
        session = self.store.create_session(session_id, root_task)
        self.refresh_session_gauges()
        return session

    def _require_session(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            msg = f"Session '{session_id}' not found"
            raise NotFoundError(msg)
        return session

    def _list_sessions(self) -> list[SessionSummary]:
        return [
            SessionSummary(
                session_id=s.id,
                status=s.status,
                root_task=s.root_task,
                event_count=len(self.store.get_session_events(s.id)),
            )
            for s in self.store.list_sessions()
        ]

    def _build_tree(self, session_id: str, include_completed: bool, max_depth: int | None) -> ActivityTree:
        session = self._require_session(session_id)
        if max_depth is None:
            max_depth = self.display_settings(session_id).max_tree_depth
        events = self.store.get_session_events(session_id)
        return build_activity_tree(session, events, include_completed=include_completed, max_depth=max_depth)

    def _export(self, session_id: str, fmt: ExportFormat | str) -> str:
        session = self._require_session(session_id)
        return export_session(session, self.store.get_session_events(session_id), fmt)

    def _configure_display(self, session_id: str, settings: DisplaySettings) -> DisplaySettings:
        self._require_session(session_id)
        self._display[session_id] = settings
        logger.info("Display settings updated for session {}", session_id)
        return settings

    def _start_stream(self, session_id: str, options: StreamOptions | None, sink: Sink | None) -> str:
        if not session_id or not session_id.strip():
            msg = "session_id must be a non-empty string"
            raise ValidationError(msg)
        if self.store.get_session(session_id) is None:
            self.store.create_session(session_id)
        return self.broadcaster.start_stream(session_id, self._stream_options(session_id, options), sink)

    def _stream_options(self, session_id: str, options: StreamOptions | None) -> StreamOptions:
        """Fill options the caller left unset from the session's display settings."""
        options = options or StreamOptions()
        display = self._display.get(session_id)
        if display is None:
            return options

        explicit = options.model_fields_set
        defaults = {
            "show_timings": display.show_timings,
            "highlight_errors": display.highlight_errors,
            "collapse_completed": display.collapse_fast_ops,
            "slow_threshold_ms": display.threshold_slow_ms,
        }
        return options.model_copy(update={k: v for k, v in defaults.items() if k not in explicit})

    def _require_stream(self, stream_id: str) -> StreamInfo:
        info = self.broadcaster.get_stream_info(stream_id)
        if info is None:
            msg = f"Stream '{stream_id}' not found"
            raise NotFoundError(msg)
        return info

    def _stop_stream(self, stream_id: str) -> StreamInfo:
        self._require_stream(stream_id)
        self.broadcaster.stop_stream(stream_id)
        return self._require_stream(stream_id)

    def _health(self, detailed: bool) -> HealthReport:
        self.refresh_session_gauges()
        if not detailed:
            return self.monitor.get_health_status()
        report = self.monitor.get_detailed_metrics()
        report.components = {
            "store": self.store.stats(),
            "streams": self.broadcaster.stats(),
            "errors": self.policy.error_stats(),
        }
        return report

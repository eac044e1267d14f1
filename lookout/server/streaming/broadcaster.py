"""In-process broadcast engine.

Tracks live subscriptions ("streams") per session and pushes every broadcast
event to each of them, formatted per the stream's options.  Ephemeral --
empty on process restart.

Delivery is best-effort and at-most-once.  Each stream has a sink; the
default sink is a bounded ``asyncio.Queue`` drained by ``listen``.  A sink
that raises (including a full queue) stops that stream only.

Stream lifecycle: ``active -> stopped``.  Stopping removes the stream from
its session's subscriber set immediately; the bookkeeping entry stays
visible to ``get_stream_info`` until ``cleanup`` drops it after the
retention period.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from lookout.server.activity.formatting import (
    INDENT,
    display_action,
    format_error,
    format_event_line,
    format_plain,
    format_slow_alert,
    indent_for,
)
from lookout.server.errors import NotFoundError, ValidationError
from lookout.server.models.activity import DisplayDirective, FormattedLine
from lookout.server.models.enums import DisplayAction, EventStatus, OutputFormat, OutputKind
from lookout.server.models.events import StoredEvent
from lookout.server.models.stream import StreamInfo, StreamOptions, StreamOutput

Sink = Callable[[StreamOutput], None]

COLLAPSE_BELOW_MS = 200
"""With ``collapse_completed``, successful operations faster than this are not shown."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Stream:
    """Bookkeeping for one subscription."""

    stream_id: str
    session_id: str
    options: StreamOptions
    started_at: datetime
    sink: Sink
    queue: asyncio.Queue[StreamOutput | None] | None = None
    is_active: bool = True
    events_sent: int = 0
    stopped_at: datetime | None = None

    def info(self) -> StreamInfo:
        return StreamInfo(
            stream_id=self.stream_id,
            session_id=self.session_id,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            is_active=self.is_active,
            events_sent=self.events_sent,
            options=self.options,
        )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_for_stream(
    event: StoredEvent,
    *,
    stream_id: str,
    session_id: str,
    options: StreamOptions,
    slow_threshold_ms: float,
    now: datetime,
) -> list[StreamOutput]:
    """Outputs for one event on one stream: the event itself and an optional slow alert."""
    outputs: list[StreamOutput] = []

    body = _render_event(event, stream_id, options, now)
    if body is not None:
        outputs.append(
            StreamOutput(
                stream_id=stream_id,
                session_id=session_id,
                kind=OutputKind.EVENT,
                display_action=display_action(event),
                output=body,
                event=event,
            )
        )

    if event.duration_ms is not None and event.duration_ms > slow_threshold_ms:
        outputs.append(
            StreamOutput(
                stream_id=stream_id,
                session_id=session_id,
                kind=OutputKind.ALERT,
                display_action=DisplayAction.ALERT,
                output=_render_alert(event, stream_id, options, slow_threshold_ms, now),
                event=event,
            )
        )
    return outputs


def _render_event(
    event: StoredEvent,
    stream_id: str,
    options: StreamOptions,
    now: datetime,
) -> FormattedLine | dict[str, Any] | str | None:
    match options.output_format:
        case OutputFormat.JSON:
            return {"stream_id": stream_id, "timestamp": now.isoformat(), "event": event.model_dump(mode="json")}
        case OutputFormat.PLAIN:
            return format_plain(event, show_timings=options.show_timings)

    if not options.show_progress and event.status == EventStatus.RUNNING:
        return None
    if (
        options.collapse_completed
        and event.status == EventStatus.SUCCESS
        and (event.duration_ms or 0) < COLLAPSE_BELOW_MS
    ):
        return None

    line = format_event_line(event, show_timings=options.show_timings)
    if options.highlight_errors and event.status == EventStatus.ERROR:
        line.text = f"{line.text}\n{INDENT * (line.directive.indent_level + 2)}{format_error(event)}"
    return line


def _render_alert(
    event: StoredEvent,
    stream_id: str,
    options: StreamOptions,
    threshold_ms: float,
    now: datetime,
) -> FormattedLine | dict[str, Any] | str:
    text = format_slow_alert(event, threshold_ms)
    match options.output_format:
        case OutputFormat.JSON:
            return {"stream_id": stream_id, "timestamp": now.isoformat(), "alert": text, "event_id": event.id}
        case OutputFormat.PLAIN:
            return text
    return FormattedLine(
        text=text,
        directive=DisplayDirective(icon_key="slow", color_key="warning", indent_level=indent_for(event.event_type)),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class Broadcaster:
    """Fans events out to every active stream of a session.

    Per-session ordering: outputs reach each stream in the order
    ``broadcast_event`` was called for that session.  Nothing is promised
    across sessions.
    """

    def __init__(
        self,
        *,
        slow_threshold_ms: float = 500,
        replay_buffer_size: int = 100,
        replay_count: int = 20,
        queue_size: int = 1000,
        retention: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._streams: dict[str, Stream] = {}
        self._session_streams: dict[str, set[str]] = {}
        self._replay: dict[str, deque[StoredEvent]] = {}
        self._slow_threshold_ms = slow_threshold_ms
        self._replay_buffer_size = replay_buffer_size
        self._replay_count = replay_count
        self._queue_size = queue_size
        self._retention = retention
        self._clock = clock

    # -- Subscriptions ---------------------------------------------------------

    def start_stream(self, session_id: str, options: StreamOptions | None = None, sink: Sink | None = None) -> str:
        """Register a stream and replay the most recent buffered events to it."""
        stream_id = uuid.uuid4().hex
        queue: asyncio.Queue[StreamOutput | None] | None = None
        if sink is None:
            queue = asyncio.Queue(maxsize=self._queue_size)
            sink = queue.put_nowait

        stream = Stream(
            stream_id=stream_id,
            session_id=session_id,
            options=options or StreamOptions(),
            started_at=self._clock(),
            sink=sink,
            queue=queue,
        )
        self._streams[stream_id] = stream
        self._session_streams.setdefault(session_id, set()).add(stream_id)
        logger.info("Stream started: {} (session={}, format={})", stream_id, session_id, stream.options.output_format)

        self._replay_recent(stream)
        return stream_id

    def stop_stream(self, stream_id: str) -> None:
        """Stop a stream.  Unknown or already stopped ids are a no-op."""
        stream = self._streams.get(stream_id)
        if stream is None or not stream.is_active:
            return

        stream.is_active = False
        stream.stopped_at = self._clock()

        subscribers = self._session_streams.get(stream.session_id)
        if subscribers is not None:
            subscribers.discard(stream_id)
            if not subscribers:
                del self._session_streams[stream.session_id]

        if stream.queue is not None:
            # Make room for the end-of-stream marker so listeners always wake.
            if stream.queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    stream.queue.get_nowait()
            stream.queue.put_nowait(None)

        logger.info("Stream stopped: {}", stream_id)

    def get_stream(self, stream_id: str) -> Stream | None:
        return self._streams.get(stream_id)

    def get_stream_info(self, stream_id: str) -> StreamInfo | None:
        stream = self._streams.get(stream_id)
        return stream.info() if stream else None

    def session_stream_ids(self, session_id: str) -> list[str]:
        return sorted(self._session_streams.get(session_id, ()))

    # -- Broadcast -------------------------------------------------------------

    def broadcast_event(self, session_id: str, event: StoredEvent) -> int:
        """Buffer *event* for replay and deliver it to every active stream.

        Returns the number of streams that received it.  Delivery faults are
        contained per stream and never raised.
        """
        buffer = self._replay.get(session_id)
        if buffer is None:
            buffer = self._replay[session_id] = deque(maxlen=self._replay_buffer_size)
        buffer.append(event)

        delivered = 0
        for stream_id in list(self._session_streams.get(session_id, ())):
            stream = self._streams.get(stream_id)
            if stream is None or not stream.is_active:
                continue
            if self._deliver(stream, event):
                stream.events_sent += 1
                delivered += 1
        return delivered

    def forget_session(self, session_id: str) -> None:
        """Drop the replay buffer of an expired session and stop its streams."""
        self._replay.pop(session_id, None)
        for stream_id in list(self._session_streams.get(session_id, ())):
            self.stop_stream(stream_id)

    async def listen(self, stream_id: str) -> AsyncIterator[StreamOutput]:
        """Yield outputs of a queue-backed stream until it is stopped."""
        stream = self._streams.get(stream_id)
        if stream is None:
            msg = f"Stream '{stream_id}' not found"
            raise NotFoundError(msg)
        if stream.queue is None:
            msg = f"Stream '{stream_id}' delivers to a custom sink and cannot be listened to"
            raise ValidationError(msg)

        queue = stream.queue
        while stream.is_active or not queue.empty():
            item = await queue.get()
            if item is None:
                return
            yield item

    # -- Maintenance -----------------------------------------------------------

    def cleanup(self, now: datetime | None = None) -> int:
        """Forget stopped streams older than the retention period.  Active streams are untouched."""
        now = now or self._clock()
        stale = [
            sid
            for sid, s in self._streams.items()
            if not s.is_active and s.stopped_at is not None and now - s.stopped_at > self._retention
        ]
        for stream_id in stale:
            del self._streams[stream_id]
        if stale:
            logger.info("Cleaned up {} stopped streams", len(stale))
        return len(stale)

    def stats(self) -> dict[str, Any]:
        active = [s for s in self._streams.values() if s.is_active]
        return {
            "active_streams": len(active),
            "total_streams": len(self._streams),
            "monitored_sessions": len(self._session_streams),
            "total_events_streamed": sum(s.events_sent for s in active),
        }

    # -- Internals -------------------------------------------------------------

    def _threshold_for(self, stream: Stream) -> float:
        override = stream.options.slow_threshold_ms
        return override if override is not None else self._slow_threshold_ms

    def _deliver(self, stream: Stream, event: StoredEvent) -> int:
        """Push the stream's outputs for *event* to its sink.  Returns how many were sent."""
        outputs = format_for_stream(
            event,
            stream_id=stream.stream_id,
            session_id=stream.session_id,
            options=stream.options,
            slow_threshold_ms=self._threshold_for(stream),
            now=self._clock(),
        )
        for output in outputs:
            # A sink may stop its own stream mid-delivery.
            if not stream.is_active:
                return 0
            try:
                stream.sink(output)
            except Exception:
                logger.opt(exception=True).warning("Stream {}: delivery failed, stopping stream", stream.stream_id)
                self.stop_stream(stream.stream_id)
                return 0
        return len(outputs)

    def _replay_recent(self, stream: Stream) -> None:
        buffer = self._replay.get(stream.session_id)
        if not buffer or self._replay_count == 0:
            return
        for event in list(buffer)[-self._replay_count :]:
            self._deliver(stream, event)
            if not stream.is_active:
                break

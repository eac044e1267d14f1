"""Live event streams."""

from lookout.server.streaming.broadcaster import Broadcaster, Stream, format_for_stream

__all__ = ["Broadcaster", "Stream", "format_for_stream"]

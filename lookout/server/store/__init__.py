"""Session / event store implementations."""

from lookout.server.store.base import EventStore
from lookout.server.store.memory import MemoryEventStore

__all__ = ["EventStore", "MemoryEventStore"]

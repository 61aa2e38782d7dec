"""Scheduled notification events — model, durable store, and scheduler."""

from src.events.models import (
    FAILED,
    PENDING,
    SCHEDULED,
    SENT,
    STATUSES,
    ScheduledEvent,
)
from src.events.persistence import DebouncedFlush, write_text_atomic
from src.events.scheduler import EventScheduler, ShutdownTimeoutError
from src.events.store import (
    DuplicateEventError,
    EventStore,
    EventStoreCorruptError,
    backoff_delay,
)

__all__ = [
    "PENDING",
    "SCHEDULED",
    "SENT",
    "FAILED",
    "STATUSES",
    "ScheduledEvent",
    "EventStore",
    "EventScheduler",
    "DebouncedFlush",
    "write_text_atomic",
    "backoff_delay",
    "DuplicateEventError",
    "EventStoreCorruptError",
    "ShutdownTimeoutError",
]

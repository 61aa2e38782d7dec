"""EventStore — durable JSON-file persistence for scheduled events."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import dataclasses
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from src.events.models import (
    FAILED,
    PENDING,
    SCHEDULED,
    SENT,
    STATUSES,
    ScheduledEvent,
    ensure_aware,
    json_default,
    utcnow,
)
from src.events.persistence import DebouncedFlush, write_text_atomic

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from src.events.persistence import CallLater

logger = logging.getLogger(__name__)

DEFAULT_EVENTS_PATH = Path("data/scheduled-events.json")
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETENTION_HOURS = 48.0
DEFAULT_CLEANUP_INTERVAL_HOURS = 24.0
DEFAULT_SAVE_DEBOUNCE_SECONDS = 1.0

MAX_BACKOFF_SECONDS = 60
# get_next_pending() looks this far ahead.
NEXT_PENDING_WINDOW = timedelta(seconds=60)


class DuplicateEventError(ValueError):
    """Raised when an event id is already present in the store."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Scheduled event {event_id!r} already exists")
        self.event_id = event_id


class EventStoreCorruptError(RuntimeError):
    """Raised when the events file exists but cannot be parsed."""


def backoff_delay(retry_count: int) -> timedelta:
    """Delay before retry number *retry_count*: min(2^n seconds, 60s)."""
    return timedelta(seconds=min(2 ** min(retry_count, 6), MAX_BACKOFF_SECONDS))


class EventStore:
    """Single source of truth for :class:`ScheduledEvent` records.

    Records live in memory and the whole set is rewritten to *path* after
    mutations, coalesced by a :class:`DebouncedFlush` window. Every record
    handed out is a copy; mutate through the store's methods only.

    A missing file means an empty store. A file that exists but does not
    parse raises :class:`EventStoreCorruptError` and is left untouched.

    Args:
        path: JSON file location.
        max_retries: Default for events added with ``max_retries=0``.
        retention_hours: Age after which terminal events are cleaned up.
        cleanup_interval_hours: How often the background cleanup runs.
        save_debounce_seconds: Flush coalescing window.
        clock: Returns the current aware UTC time.
        call_later: Timer function for the flush policy (tests).
    """

    def __init__(
        self,
        path: Path | str = DEFAULT_EVENTS_PATH,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retention_hours: float = DEFAULT_RETENTION_HOURS,
        cleanup_interval_hours: float = DEFAULT_CLEANUP_INTERVAL_HOURS,
        save_debounce_seconds: float = DEFAULT_SAVE_DEBOUNCE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        call_later: CallLater | None = None,
    ) -> None:
        self._path = Path(path)
        self._max_retries = max_retries
        self._retention = timedelta(hours=retention_hours)
        self._cleanup_interval = cleanup_interval_hours * 3600
        self._clock = clock
        self._events: dict[str, ScheduledEvent] = {}
        self._loaded = False
        self._write_lock = asyncio.Lock()
        self._flush_policy = DebouncedFlush(
            self._save, save_debounce_seconds, call_later=call_later
        )
        self._cleanup_task: asyncio.Task | None = None
        self.flush_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        return self._flush_policy.dirty

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Load the file (once) and start the periodic cleanup."""
        await self._ensure_loaded()
        self._flush_policy.reopen()
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def shutdown(self) -> None:
        """Stop the cleanup timer and flush. Flush errors propagate."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        await self._flush_policy.close()
        logger.info("Event store shutdown complete (%d events)", len(self._events))

    async def flush(self) -> None:
        """Write pending changes now instead of waiting for the window."""
        await self._flush_policy.flush_now()

    # -- CRUD ------------------------------------------------------------------

    async def add(self, event: ScheduledEvent) -> ScheduledEvent:
        """Insert a new event. Raises DuplicateEventError if the id exists."""
        await self._ensure_loaded()
        if event.id in self._events:
            raise DuplicateEventError(event.id)

        record = self._new_record(event, self._clock())
        self._events[record.id] = record
        self._flush_policy.mark_dirty()
        logger.debug("Added event %s scheduled for %s", record.id, record.scheduled_for)
        return record.copy()

    async def add_batch(self, events: Iterable[ScheduledEvent]) -> list[ScheduledEvent]:
        """Insert several events with a single flush.

        The whole batch is rejected if any id already exists or repeats.
        """
        await self._ensure_loaded()
        events = list(events)
        seen: set[str] = set()
        for event in events:
            if event.id in self._events or event.id in seen:
                raise DuplicateEventError(event.id)
            seen.add(event.id)

        now = self._clock()
        records = [self._new_record(event, now) for event in events]
        for record in records:
            self._events[record.id] = record
        if records:
            self._flush_policy.mark_dirty()
        logger.info("Added batch of %d events", len(records))
        return [record.copy() for record in records]

    async def get(self, event_id: str) -> ScheduledEvent | None:
        """Fetch an event by id, or None if not found."""
        await self._ensure_loaded()
        record = self._events.get(event_id)
        return record.copy() if record else None

    async def update(self, event_id: str, **changes: Any) -> ScheduledEvent | None:
        """Apply field changes. The id cannot change; updated_at is refreshed."""
        await self._ensure_loaded()
        current = self._events.get(event_id)
        if current is None:
            return None

        changes.pop("id", None)
        changes = copy.deepcopy(changes)
        changes["updated_at"] = self._clock()
        updated = dataclasses.replace(current, **changes)
        self._events[event_id] = updated
        self._flush_policy.mark_dirty()
        return updated.copy()

    async def remove(self, event_id: str) -> bool:
        """Delete an event. Returns True if it existed."""
        await self._ensure_loaded()
        existed = self._events.pop(event_id, None) is not None
        if existed:
            self._flush_policy.mark_dirty()
            logger.debug("Removed event %s", event_id)
        return existed

    async def query(
        self,
        *,
        status: str | Iterable[str] | None = None,
        plugin_name: str | None = None,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[ScheduledEvent]:
        """Filter events; results are sorted by scheduled_for ascending.

        ``before`` and ``after`` are inclusive bounds on scheduled_for.
        """
        await self._ensure_loaded()
        statuses = _normalize_statuses(status)
        before = ensure_aware(before) if before is not None else None
        after = ensure_aware(after) if after is not None else None

        results = [
            event
            for event in self._events.values()
            if (statuses is None or event.status in statuses)
            and (plugin_name is None or event.plugin_name == plugin_name)
            and (after is None or event.scheduled_for >= after)
            and (before is None or event.scheduled_for <= before)
        ]
        results.sort(key=lambda e: e.scheduled_for)
        return [event.copy() for event in results]

    async def get_next_pending(self, limit: int = 10) -> list[ScheduledEvent]:
        """Pending events due within the next minute, earliest first."""
        pending = await self.query(
            status=PENDING, before=self._clock() + NEXT_PENDING_WINDOW
        )
        return pending[:limit]

    # -- Status transitions ----------------------------------------------------

    async def mark_as_scheduled(self, event_id: str) -> ScheduledEvent | None:
        return await self.update(event_id, status=SCHEDULED)

    async def mark_as_sent(self, event_id: str) -> ScheduledEvent | None:
        return await self.update(event_id, status=SENT, completed_at=self._clock())

    async def mark_as_failed(self, event_id: str, error: str) -> ScheduledEvent | None:
        """Record a failed attempt and either reschedule or give up.

        Below max_retries the event goes back to pending, due after the
        backoff delay. At max_retries it becomes failed for good. Terminal
        events are returned unchanged.
        """
        await self._ensure_loaded()
        current = self._events.get(event_id)
        if current is None:
            logger.debug("Ignoring failure for unknown event %s", event_id)
            return None
        if current.is_terminal:
            logger.debug(
                "Ignoring failure for event %s already %s", event_id, current.status
            )
            return current.copy()

        now = self._clock()
        retry_count = current.retry_count + 1

        if retry_count >= current.max_retries:
            record = await self.update(
                event_id,
                status=FAILED,
                retry_count=retry_count,
                last_attempt_at=now,
                error=error,
            )
            logger.error(
                "Event %s permanently failed after %d attempts: %s",
                event_id,
                retry_count,
                error,
            )
            return record

        delay = backoff_delay(retry_count)
        record = await self.update(
            event_id,
            status=PENDING,
            retry_count=retry_count,
            scheduled_for=now + delay,
            last_attempt_at=now,
            error=error,
        )
        logger.warning(
            "Event %s failed (attempt %d/%d), retrying in %ds: %s",
            event_id,
            retry_count,
            current.max_retries,
            int(delay.total_seconds()),
            error,
        )
        return record

    # -- Maintenance -----------------------------------------------------------

    async def cleanup(self) -> int:
        """Remove sent/failed events older than the retention window."""
        await self._ensure_loaded()
        cutoff = self._clock() - self._retention
        stale = [
            event_id
            for event_id, event in self._events.items()
            if event.is_terminal and (event.updated_at or event.scheduled_for) < cutoff
        ]
        for event_id in stale:
            del self._events[event_id]
        if stale:
            self._flush_policy.mark_dirty()
            logger.info("Cleaned up %d old events", len(stale))
        return len(stale)

    async def clear(self) -> None:
        """Drop every event and write the empty file immediately."""
        await self._ensure_loaded()
        self._events.clear()
        self._flush_policy.mark_dirty()
        await self._flush_policy.flush_now()

    async def get_stats(self) -> dict[str, int]:
        """Count events per status."""
        await self._ensure_loaded()
        stats = dict.fromkeys(STATUSES, 0)
        for event in self._events.values():
            stats[event.status] += 1
        stats["total"] = len(self._events)
        return stats

    # -- Internal --------------------------------------------------------------

    def _new_record(self, event: ScheduledEvent, now: datetime) -> ScheduledEvent:
        record = event.copy()
        record.created_at = now
        record.updated_at = now
        record.retry_count = 0
        record.max_retries = event.max_retries or self._max_retries
        return record

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        events = await asyncio.to_thread(self._read_file)
        # Another caller may have finished loading while we were reading.
        if self._loaded:
            return
        for event in events:
            if event.id in self._events:
                logger.warning("Duplicate event id %s in %s, keeping last", event.id, self._path)
            self._events[event.id] = event
        self._loaded = True

    def _read_file(self) -> list[ScheduledEvent]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No events file at %s, starting fresh", self._path)
            return []

        if not text.strip():
            logger.warning("Events file %s is empty, starting fresh", self._path)
            return []

        try:
            raw = json.loads(text)
            if not isinstance(raw, list):
                msg = f"expected a JSON array, got {type(raw).__name__}"
                raise ValueError(msg)
            events = [ScheduledEvent.from_dict(item) for item in raw]
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            msg = f"Cannot load scheduled events from {self._path}: {exc}"
            raise EventStoreCorruptError(msg) from exc

        logger.info("Loaded %d scheduled events from %s", len(events), self._path)
        return events

    async def _save(self) -> None:
        async with self._write_lock:
            records = [event.to_dict() for event in self._events.values()]
            text = json.dumps(records, indent=2, default=json_default)
            await asyncio.to_thread(write_text_atomic, self._path, text)
            self.flush_count += 1
        logger.debug("Saved %d events to %s", len(records), self._path)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Scheduled event cleanup failed")


def _normalize_statuses(status: str | Iterable[str] | None) -> frozenset[str] | None:
    if status is None:
        return None
    statuses = frozenset([status]) if isinstance(status, str) else frozenset(status)
    unknown = statuses - set(STATUSES)
    if unknown:
        msg = f"Unknown event status: {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    return statuses

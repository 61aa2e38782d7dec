"""EventScheduler — turns persisted due-dates into delivery attempts."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.events.models import PENDING, SCHEDULED, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from src.events.models import ScheduledEvent
    from src.events.store import EventStore
    from src.notifications.channels import NotificationGateway

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 60.0
DEFAULT_HORIZON_HOURS = 6.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 5.0

RECONCILE_JOB_ID = "event-reconcile"


class ShutdownTimeoutError(TimeoutError):
    """Raised when graceful shutdown does not finish within its deadline."""


def _job_id(event_id: str) -> str:
    return f"event:{event_id}"


class EventScheduler:
    """Arms in-process timers for events due within a rolling horizon.

    Events further out stay ``pending`` in the store until a reconciliation
    pass brings them inside the horizon. Reconciliation also delivers
    anything whose due time passed without a live timer, which covers
    restarts and lost timers.

    Args:
        store: EventStore holding the records.
        gateway: Delivery gateway used for every attempt.
        check_interval: Seconds between reconciliation passes.
        horizon_hours: How far ahead timers are armed.
        shutdown_timeout: Deadline for :meth:`stop`, in seconds.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        store: EventStore,
        gateway: NotificationGateway,
        *,
        check_interval: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        horizon_hours: float = DEFAULT_HORIZON_HOURS,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._check_interval = check_interval
        self._horizon = timedelta(hours=horizon_hours)
        self._shutdown_timeout = shutdown_timeout
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None
        # event id -> due time of the live timer
        self._armed: dict[str, datetime] = {}
        self._in_flight: set[str] = set()
        self._running = False
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> EventStore:
        return self._store

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Load the store, arm in-horizon events and start reconciliation."""
        if self._running:
            return

        await self._store.start()

        # A fresh process has no timers, so nothing can really be "scheduled".
        for orphan in await self._store.query(status=SCHEDULED):
            await self._store.update(orphan.id, status=PENDING)

        # APScheduler's shutdown is deferred, so a stopped instance cannot be
        # restarted reliably; build a new one each time.
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.start()
        self._running = True
        self._stopping = False

        candidates = await self._store.query(
            status=PENDING, before=self._clock() + self._horizon
        )
        for event in candidates:
            await self._arm(event)

        self._scheduler.add_job(
            self._reconcile_tick,
            trigger=IntervalTrigger(seconds=self._check_interval, timezone=UTC),
            id=RECONCILE_JOB_ID,
            name="reconcile scheduled events",
            replace_existing=True,
        )
        logger.info(
            "Event scheduler started: %d armed, horizon=%s, check every %ss",
            len(self._armed),
            self._horizon,
            self._check_interval,
        )

    async def stop(self) -> None:
        """Clear timers, revert armed events to pending and flush the store.

        Raises:
            ShutdownTimeoutError: If this takes longer than shutdown_timeout.
        """
        if not self._running:
            return
        self._stopping = True
        try:
            await asyncio.wait_for(self._shutdown(), timeout=self._shutdown_timeout)
        except TimeoutError as exc:
            msg = f"Event scheduler did not stop within {self._shutdown_timeout}s"
            raise ShutdownTimeoutError(msg) from exc
        finally:
            self._running = False
        logger.info("Event scheduler stopped")

    # -- Event management ------------------------------------------------------

    async def add_event(self, event: ScheduledEvent) -> ScheduledEvent:
        """Persist an event and arm it (or deliver it) if it is due soon."""
        record = await self._store.add(event)
        logger.info(
            "Added event %s (%s/%s) for %s",
            record.id,
            record.plugin_name,
            record.event_type,
            record.scheduled_for.isoformat(),
        )
        if self._accepting:
            await self._arm(record)
            return await self._store.get(record.id) or record
        return record

    async def add_events(self, events: Iterable[ScheduledEvent]) -> list[ScheduledEvent]:
        """Persist several events with one flush, then arm them in due order."""
        records = await self._store.add_batch(events)
        if self._accepting:
            for record in sorted(records, key=lambda e: e.scheduled_for):
                await self._arm(record)
        return records

    async def cancel_event(self, event_id: str) -> bool:
        """Drop any live timer and delete the event. False if it was unknown."""
        self._disarm(event_id)
        removed = await self._store.remove(event_id)
        if removed:
            logger.info("Cancelled event %s", event_id)
        return removed

    async def reconcile(self) -> None:
        """Deliver missed events, then arm pending events now within the horizon."""
        if not self._accepting:
            return
        now = self._clock()

        missed = await self._store.query(status=(PENDING, SCHEDULED), before=now)
        missed = [
            e for e in missed if e.id not in self._armed and e.id not in self._in_flight
        ]
        if missed:
            logger.info("Found %d missed event(s), delivering now", len(missed))
        for event in missed:
            await self._deliver(event)

        upcoming = await self._store.query(
            status=(PENDING, SCHEDULED), after=now, before=now + self._horizon
        )
        for event in upcoming:
            await self._arm(event)

    # -- Introspection ---------------------------------------------------------

    async def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "running": self._running,
            "armed": len(self._armed),
            "in_flight": len(self._in_flight),
        }
        stats.update(await self._store.get_stats())
        return stats

    def get_scheduled_events(self) -> list[dict[str, Any]]:
        """Armed events with their due time and seconds remaining."""
        now = self._clock()
        return [
            {
                "id": event_id,
                "scheduled_for": due.isoformat(),
                "seconds_remaining": max(0.0, (due - now).total_seconds()),
            }
            for event_id, due in sorted(self._armed.items(), key=lambda item: item[1])
        ]

    # -- Internal --------------------------------------------------------------

    @property
    def _accepting(self) -> bool:
        return self._running and not self._stopping and self._scheduler is not None

    async def _arm(self, event: ScheduledEvent) -> None:
        if event.id in self._armed or event.id in self._in_flight:
            return

        delay = event.scheduled_for - self._clock()
        if delay <= timedelta(0):
            logger.info("Event %s is overdue by %s, delivering now", event.id, -delay)
            await self._deliver(event)
            return
        if delay > self._horizon:
            if event.status == SCHEDULED:
                await self._store.update(event.id, status=PENDING)
            return

        self._scheduler.add_job(
            self._on_timer_fired,
            trigger=DateTrigger(run_date=utcnow() + delay, timezone=UTC),
            id=_job_id(event.id),
            name=f"deliver {event.id}",
            args=[event.id],
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._armed[event.id] = event.scheduled_for
        if event.status != SCHEDULED:
            await self._store.mark_as_scheduled(event.id)
        logger.debug("Armed event %s in %s", event.id, delay)

    def _disarm(self, event_id: str) -> None:
        self._armed.pop(event_id, None)
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(_job_id(event_id))
        except JobLookupError:
            # Date jobs are removed by APScheduler once they fire.
            pass

    async def _on_timer_fired(self, event_id: str) -> None:
        self._disarm(event_id)
        try:
            event = await self._store.get(event_id)
            if event is None or event.is_terminal:
                logger.debug("Timer fired for %s but it is gone or finished", event_id)
                return
            await self._deliver(event)
        except Exception:
            logger.exception("Timer handling failed for event %s", event_id)

    async def _deliver(self, event: ScheduledEvent) -> None:
        if self._stopping:
            return
        if event.id in self._in_flight or event.id in self._armed:
            logger.debug("Event %s already armed or being delivered", event.id)
            return

        self._in_flight.add(event.id)
        try:
            # The snapshot may predate a cancel or reschedule made while an
            # earlier delivery in the same batch was awaited.
            current = await self._store.get(event.id)
            if current is None or current.is_terminal:
                logger.debug("Event %s is gone or finished, skipping delivery", event.id)
                return
            if (
                current.scheduled_for != event.scheduled_for
                and current.scheduled_for > self._clock()
            ):
                logger.debug("Event %s was rescheduled, skipping delivery", event.id)
                return
            event = current
            try:
                delivered = await self._gateway.send_notification(event.to_notification())
                error = "" if delivered else "Delivery gateway reported failure"
            except Exception as exc:
                logger.exception("Delivery raised for event %s", event.id)
                delivered, error = False, str(exc) or type(exc).__name__

            if delivered:
                await self._store.mark_as_sent(event.id)
                logger.info("Delivered event %s: %r", event.id, event.title)
                return
            record = await self._store.mark_as_failed(event.id, error)
        finally:
            self._in_flight.discard(event.id)

        if record is not None and record.status == PENDING and self._accepting:
            await self._arm(record)

    async def _reconcile_tick(self) -> None:
        try:
            await self.reconcile()
        except Exception:
            logger.exception("Event reconciliation pass failed")

    async def _shutdown(self) -> None:
        armed = list(self._armed)
        for event_id in armed:
            self._disarm(event_id)
        for event_id in armed:
            event = await self._store.get(event_id)
            if event is not None and event.status == SCHEDULED:
                await self._store.update(event_id, status=PENDING)
        if armed:
            logger.info("Reverted %d armed event(s) to pending", len(armed))

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        await self._store.shutdown()

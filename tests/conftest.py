"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.events.store import EventStore

START = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class _FakeHandle:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class FakeTimers:
    """Stands in for ``loop.call_later``; timers fire only via :meth:`fire_all`."""

    def __init__(self) -> None:
        self.handles: list[_FakeHandle] = []

    def __call__(self, delay: float, callback) -> _FakeHandle:
        handle = _FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def armed(self) -> list[_FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def fire_all(self) -> None:
        for handle in self.armed:
            handle.fire()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def events_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "scheduled-events.json"


@pytest.fixture
async def store(events_path: Path, clock: FakeClock, timers: FakeTimers):
    """EventStore with a fake clock and hand-fired flush timers."""
    s = EventStore(events_path, clock=clock, call_later=timers)
    yield s
    await s.shutdown()


@pytest.fixture
def gateway() -> MagicMock:
    """Delivery gateway that succeeds unless a test reconfigures it."""
    gw = MagicMock()
    gw.send_notification = AsyncMock(return_value=True)
    gw.send_bulk_notifications = AsyncMock(side_effect=lambda notifications: len(notifications))
    gw.test_connection = AsyncMock(return_value=True)
    return gw

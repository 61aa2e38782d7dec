"""Atomic file writes and the debounced flush policy used by the event store."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    # Same shape as ``loop.call_later``: (delay_seconds, callback) -> handle with .cancel()
    CallLater = Callable[[float, Callable[[], None]], Any]

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, text: str) -> None:
    """Write *text* to a sibling temp file, fsync it, then rename over *path*.

    Readers see either the old file or the new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


class DebouncedFlush:
    """Dirty flag plus at most one pending flush.

    The first :meth:`mark_dirty` of a window arms a timer for *delay* seconds;
    further marks inside the window only keep the flag set, so a burst of
    mutations costs one write. Background flush errors are logged and leave
    the flag set; :meth:`flush_now` lets errors propagate.

    Args:
        flush: Coroutine function that persists the current state.
        delay: Coalescing window in seconds.
        call_later: Timer function, defaults to the running loop's
            ``call_later``. Tests pass a fake to fire windows by hand.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[None]],
        delay: float,
        *,
        call_later: CallLater | None = None,
    ) -> None:
        self._flush = flush
        self._delay = delay
        self._call_later = call_later
        self._handle: Any = None
        self._task: asyncio.Task | None = None
        self._closed = False
        self.dirty = False

    @property
    def pending(self) -> bool:
        """True while a flush timer is armed."""
        return self._handle is not None

    def mark_dirty(self) -> None:
        self.dirty = True
        if self._closed:
            logger.debug("Flush policy closed, change stays in memory only")
            return
        if self._handle is not None:
            return
        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._handle = call_later(self._delay, self._on_timer)

    async def flush_now(self) -> None:
        """Cancel the timer and flush immediately if anything is dirty."""
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            await self._task
        if self.dirty:
            await self._flush_once()

    async def close(self) -> None:
        """Final flush; later marks no longer arm timers."""
        await self.flush_now()
        self._closed = True

    def reopen(self) -> None:
        self._closed = False
        if self.dirty:
            self.mark_dirty()

    # -- Internal --------------------------------------------------------------

    def _on_timer(self) -> None:
        self._handle = None
        if self.dirty:
            self._task = asyncio.ensure_future(self._background_flush())

    async def _background_flush(self) -> None:
        try:
            await self._flush_once()
        except Exception:
            logger.exception("Background flush failed, will retry on next change")

    async def _flush_once(self) -> None:
        self.dirty = False
        try:
            await self._flush()
        except BaseException:
            self.dirty = True
            raise

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

"""
watcher.py
==========
The live handle returned by ``JdkDetector.watch()``.

A ``WatchHandle`` owns the unwatch callbacks of every directory watcher and
result subscription created for it. It delivers two kinds of events:

  results  – the current result set (raw ``ResultSet`` or plain dict)
  error    – the exception that ended the watch

Events can be consumed with ``on(event, callback)`` or by iterating the
handle asynchronously. Once stopped (explicitly or by an error) the handle
stays stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Union

logger = logging.getLogger(__name__)

RESULTS = "results"
ERROR = "error"


# ──────────────────────────────────────────────
#  Events
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class ResultsEvent:
    results: Any


@dataclass(frozen=True)
class ErrorEvent:
    error: BaseException


WatchEvent = Union[ResultsEvent, ErrorEvent]

_END = object()


# ──────────────────────────────────────────────
#  Debouncer
# ──────────────────────────────────────────────

class Debouncer:
    """
    Collapses a burst of calls into one ``callback()`` after ``delay`` seconds
    of quiet. Each call restarts the timer.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.delay = delay
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def __call__(self) -> None:
        if self._cancelled:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.delay, self._fire)

    def notify_threadsafe(self) -> None:
        """Entry point for callbacks running on a watcher thread."""
        if self._cancelled or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self)

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if not self._cancelled:
            self._callback()


# ──────────────────────────────────────────────
#  WatchHandle
# ──────────────────────────────────────────────

class WatchHandle:
    """
    Handle for an active watch.

    Not meant to be created directly; ``JdkDetector.watch()`` builds one.
    """

    def __init__(self) -> None:
        self._unwatchers: List[Callable[[], None]] = []
        self._listeners: Dict[str, List[Callable[[Any], None]]] = {RESULTS: [], ERROR: []}
        self._queues: List[asyncio.Queue] = []
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active_watchers(self) -> int:
        return len(self._unwatchers)

    # ── Lifecycle ─────────────────────────────

    def add_unwatcher(self, unwatch: Callable[[], None]) -> None:
        """Register a cleanup; runs immediately if the handle is already stopped."""
        if self._stopped:
            unwatch()
            return
        self._unwatchers.append(unwatch)

    def stop(self) -> None:
        """Release every watcher, in registration order. Safe to call again."""
        if not self._stopped:
            self._stopped = True
            logger.info("Stopping JDK watch (%d watcher(s))", len(self._unwatchers))
        while self._unwatchers:
            unwatch = self._unwatchers.pop(0)
            try:
                unwatch()
            except Exception as exc:
                logger.warning("Error while releasing watcher: %s", exc)
        for queue in self._queues:
            queue.put_nowait(_END)

    def spawn(self, coro: Any) -> Optional[asyncio.Task]:
        """Run ``coro`` as a task tied to this handle."""
        if self._stopped:
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no task started by this handle is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Events ────────────────────────────────

    def on(self, event: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Add a listener for ``results`` or ``error``; returns a remover."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event!r}")
        listeners = self._listeners[event]
        listeners.append(callback)

        def remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return remove

    def emit_results(self, results: Any) -> None:
        if self._stopped:
            return
        for queue in self._queues:
            queue.put_nowait(ResultsEvent(results))
        self._call_listeners(RESULTS, results)

    def fail(self, error: BaseException) -> None:
        """Stop the handle and report ``error``."""
        if self._stopped:
            logger.debug("Ignoring error on stopped watch: %s", error)
            return
        if not self._listeners[ERROR] and not self._queues:
            logger.error("JDK watch failed: %s", error)
        # Iterators must see the error before the end marker from stop()
        for queue in self._queues:
            queue.put_nowait(ErrorEvent(error))
        self.stop()
        self._call_listeners(ERROR, error)

    def _call_listeners(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception("Watch %s listener raised", event)

    async def __aiter__(self) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        if self._stopped:
            return
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                yield item
                if isinstance(item, ErrorEvent):
                    return
        finally:
            self._queues.remove(queue)

"""
Timer scheduling for debounced recording and on_end bubbling.

The engine is single-threaded and cooperative: timers are callbacks queued
on the host's event loop, never threads. Two implementations:

- AsyncioScheduler: loop.call_later() on the running asyncio loop
- ManualScheduler: virtual clock advanced explicitly (tests, custom loops)

Both return handles with cancel(), which is all the engine relies on.
"""
import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


class _ImmediateHandle:
    """Handle for a callback that already ran synchronously."""

    def cancel(self) -> None:
        pass


class AsyncioScheduler:
    """Schedule on an asyncio event loop.

    Without an explicit loop, the loop running at scheduling time is used.
    When no loop is running the callback runs immediately - the quiet window
    collapses to zero rather than the record being lost.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, running deferred callback immediately")
                callback()
                return _ImmediateHandle()
        return loop.call_later(delay_ms / 1000.0, callback)


class ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler driven by advance().

    Example:
        scheduler = ManualScheduler()
        scheduler.call_later(50, fire)
        scheduler.advance(49)   # nothing
        scheduler.advance(1)    # fire() runs
    """

    def __init__(self):
        self._now: float = 0.0
        self._queue: List[Tuple[float, int, ManualHandle]] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        """Number of scheduled, not yet cancelled callbacks."""
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self._now + delay_ms, callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def advance(self, ms: float) -> int:
        """Move the clock forward, running every callback that comes due.

        Returns:
            Number of callbacks run.
        """
        target = self._now + ms
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = when
            handle.callback()
            ran += 1
        self._now = target
        return ran

    def run_pending(self) -> int:
        """Run everything queued, advancing the clock as far as needed."""
        ran = 0
        while self._queue:
            when = self._queue[0][0]
            ran += self.advance(max(0.0, when - self._now))
        return ran

"""Timer services for deferred job polls.

The tracker never sleeps itself; it asks a Scheduler to run a coroutine
function after a delay. AsyncioScheduler backs this with event-loop tasks.
ManualScheduler keeps a virtual clock that only moves when ``advance`` is
awaited, which makes poll cycles deterministic.
"""

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(ABC):
    """A scheduled callback that can be cancelled before it fires."""

    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running if it has not started yet."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """Whether cancel() was called."""


class Scheduler(ABC):
    """Runs coroutine functions after a delay."""

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Schedule ``callback`` to be awaited after ``delay`` seconds."""

    @abstractmethod
    def time(self) -> float:
        """Current scheduler time in seconds."""


# ============================================
# Event loop scheduler
# ============================================

class _TaskHandle(TimerHandle):

    def __init__(self):
        self.task: Optional[asyncio.Task] = None
        self.fired = False
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        # A callback already running is left to finish; only the wait is cancelled
        if self.task is not None and not self.fired:
            self.task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Scheduler backed by tasks on the running event loop."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = _TaskHandle()
        task = asyncio.get_running_loop().create_task(self._run(delay, callback, handle))
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def _run(self, delay: float, callback: TimerCallback, handle: _TaskHandle) -> None:
        await asyncio.sleep(max(delay, 0))
        if handle.cancelled:
            return
        handle.fired = True
        try:
            await callback()
        except Exception as e:
            logger.exception(f"Scheduled callback raised: {e}")

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel every pending timer and wait for the tasks to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# ============================================
# Virtual clock scheduler
# ============================================

class _ManualHandle(TimerHandle):

    def __init__(self, due: float, callback: TimerCallback):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by a virtual clock.

    ``await advance(seconds)`` moves the clock forward and runs every callback
    that falls due on the way, in due-time order. Callbacks due at the same
    instant run concurrently, as they would on a real event loop.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._heap: list[tuple[float, int, _ManualHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = _ManualHandle(self._now + max(delay, 0), callback)
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
        return handle

    def time(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def next_due(self) -> Optional[float]:
        self._drop_cancelled()
        return self._heap[0][0] if self._heap else None

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)

    async def advance(self, seconds: float = 0.0) -> None:
        """Move the clock forward, running callbacks as they fall due."""
        target = self._now + seconds
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            self._now = due
            batch = []
            while self._heap and self._heap[0][0] == due:
                _, _, handle = heapq.heappop(self._heap)
                if not handle.cancelled:
                    batch.append(handle)
            results = await asyncio.gather(
                *(handle.callback() for handle in batch),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    raise result
        self._now = target

    async def run_until_idle(self, limit: float = 3600.0) -> None:
        """Advance until no timers remain or ``limit`` seconds have passed."""
        deadline = self._now + limit
        while True:
            due = self.next_due()
            if due is None or due > deadline:
                break
            await self.advance(due - self._now)

"""
Bounded-concurrency task scheduler with priority ordering.

Every outbound storage request goes through a scheduler so that a burst of
callers can never open more than `max_concurrency` requests at once.

Ordering rules:
- Waiting tasks are started lowest priority value first
- Tasks with equal priority start in submission order (FIFO)
- There is no fairness between bands; a busy low-number band can starve
  the higher-number ones

Each caller awaits its own future, so one failing task never affects the
others.
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 250


@dataclass(order=True)
class ScheduledTask:
    """
    A unit of work waiting in (or running from) the scheduler.

    Only `priority` and `sequence` take part in ordering, which turns the
    heap into a priority queue with FIFO tie-breaking.
    """
    priority: int
    sequence: int
    operation: Callable[[], Awaitable[Any]] = field(compare=False)
    future: asyncio.Future = field(compare=False)


class TaskScheduler:
    """
    Runs submitted operations with at most `max_concurrency` in flight.

    The queue and the in-flight counter are private; callers interact
    only through `submit`.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._max_concurrency = max_concurrency
        self._queue: list[ScheduledTask] = []
        self._sequence = itertools.count()
        self._running = 0
        self._workers: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def running_count(self) -> int:
        """Number of operations currently executing."""
        return self._running

    @property
    def pending_count(self) -> int:
        """Number of operations waiting for a free slot."""
        return len(self._queue)

    async def submit(
        self,
        operation: Callable[[], Awaitable[T]],
        priority: int = 0,
    ) -> T:
        """
        Schedule `operation` and wait for its outcome.

        Args:
            operation: Zero-argument callable returning an awaitable
            priority: Non-negative integer, lower values start first

        Returns:
            Whatever the operation returns. Exceptions raised by the
            operation are re-raised here unchanged.
        """
        if priority < 0:
            raise ValueError("priority must be a non-negative integer")

        loop = asyncio.get_running_loop()
        task = ScheduledTask(
            priority=priority,
            sequence=next(self._sequence),
            operation=operation,
            future=loop.create_future(),
        )

        heapq.heappush(self._queue, task)
        self._idle.clear()
        self._dispatch()

        return await task.future

    async def join(self) -> None:
        """Wait until no task is queued or running."""
        await self._idle.wait()

    def _dispatch(self) -> None:
        while self._running < self._max_concurrency and self._queue:
            task = heapq.heappop(self._queue)

            # Caller stopped waiting before the task got a slot
            if task.future.cancelled():
                logger.debug(
                    "Dropping cancelled task",
                    extra={"priority": task.priority, "sequence": task.sequence},
                )
                continue

            self._running += 1
            worker = asyncio.ensure_future(self._run(task))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

        if self._running == 0 and not self._queue:
            self._idle.set()

    async def _run(self, task: ScheduledTask) -> None:
        try:
            result = await task.operation()
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except Exception as e:
            if not task.future.done():
                task.future.set_exception(e)
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()

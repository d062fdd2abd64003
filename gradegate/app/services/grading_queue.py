"""Bounded grading job queue.

Grading calls are slow and expensive, so the queue caps both how many run at
once and how many may wait. Once the backlog is full, new jobs are rejected
with QueueFullError instead of piling up in memory.

All bookkeeping is synchronous and runs on the event loop thread, so it is
atomic with respect to other queue operations and needs no lock. The only
suspension points are the jobs themselves.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Generator, Generic, Optional, Set, TypeVar

from gradegate.app.core.config import (
    DEFAULT_GRADING_QUEUE_CONCURRENCY,
    DEFAULT_GRADING_QUEUE_MAX_LENGTH,
    Settings,
)
from gradegate.app.core.logging import get_logger
from gradegate.app.exceptions import QueueFullError

logger = get_logger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time view of the queue."""
    active_count: int
    queued_count: int
    max_concurrency: int
    max_queue_length: int


@dataclass
class QueuedJob(Generic[T]):
    """Handle returned by GradingQueue.submit.

    Awaiting the handle yields the job's result or raises its exception.
    ``position`` is the 1-based place in the pending queue at submission
    time; it is informational and goes stale as other jobs complete.
    """
    future: "asyncio.Future[T]"
    position: int

    def __await__(self) -> Generator[Any, None, T]:
        return self.future.__await__()

    def done(self) -> bool:
        return self.future.done()


@dataclass
class _PendingJob:
    run: Job
    future: asyncio.Future


class GradingQueue:
    """FIFO job queue with a concurrency cap and a backlog cap.

    Usage:
        queue = GradingQueue(max_concurrency=2, max_queue_length=3)

        try:
            handle = queue.submit(lambda: grade(answer))
        except QueueFullError:
            ...  # tell the client to retry later
        result = await handle

    Invariants:
    - active_count never exceeds max_concurrency
    - the pending backlog never exceeds max_queue_length (checked on submit)
    - pending jobs start in submission order
    """

    DEFAULT_MAX_CONCURRENCY = DEFAULT_GRADING_QUEUE_CONCURRENCY
    DEFAULT_MAX_QUEUE_LENGTH = DEFAULT_GRADING_QUEUE_MAX_LENGTH

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_queue_length: int = DEFAULT_MAX_QUEUE_LENGTH,
        retry_after: int = 5,
    ):
        """Initialize the grading queue.

        Args:
            max_concurrency: Maximum number of jobs running at once
            max_queue_length: Maximum number of jobs waiting to run
            retry_after: Seconds suggested to rejected callers
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_queue_length < 1:
            raise ValueError("max_queue_length must be at least 1")

        self.max_concurrency = max_concurrency
        self.max_queue_length = max_queue_length
        self.retry_after = retry_after

        self._pending: Deque[_PendingJob] = deque()
        self._active_count = 0
        self._tasks: Set[asyncio.Task] = set()

        # Counters for monitoring
        self._completed_total = 0
        self._failed_total = 0
        self._rejected_total = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GradingQueue":
        return cls(
            max_concurrency=settings.grading_queue_concurrency,
            max_queue_length=settings.grading_queue_max_length,
        )

    @property
    def active_count(self) -> int:
        return self._active_count

    @property
    def queued_count(self) -> int:
        return len(self._pending)

    def submit(self, job: Job[T]) -> QueuedJob[T]:
        """Submit a zero-argument coroutine function for execution.

        Must be called from a running event loop.

        Args:
            job: Callable returning an awaitable; called exactly once

        Returns:
            QueuedJob handle and the job's position in the pending queue

        Raises:
            QueueFullError: If the backlog is at capacity. The job is not run.
            TypeError: If job is not callable
        """
        if not callable(job):
            raise TypeError("job must be a zero-argument callable returning an awaitable")

        if len(self._pending) >= self.max_queue_length:
            self._rejected_total += 1
            logger.warning(
                "Grading queue full, job rejected",
                extra={
                    "active_count": self._active_count,
                    "queued_count": len(self._pending),
                },
            )
            raise QueueFullError("Queue length limit reached", retry_after=self.retry_after)

        future = asyncio.get_running_loop().create_future()
        self._pending.append(_PendingJob(run=job, future=future))
        position = len(self._pending)
        self._run_next()
        return QueuedJob(future=future, position=position)

    def _run_next(self) -> None:
        """Start pending jobs while capacity allows.

        Idempotent: safe to call after any state change that may have freed
        a slot.
        """
        while self._active_count < self.max_concurrency and self._pending:
            item = self._pending.popleft()
            self._active_count += 1
            task = asyncio.ensure_future(self._execute(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, item: _PendingJob) -> None:
        try:
            result = await item.run()
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as exc:
            self._failed_total += 1
            logger.warning("Grading job failed", exc_info=exc)
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            self._completed_total += 1
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active_count -= 1
            self._run_next()

    def snapshot(self) -> QueueSnapshot:
        """Return the current queue state. Has no side effects."""
        return QueueSnapshot(
            active_count=self._active_count,
            queued_count=len(self._pending),
            max_concurrency=self.max_concurrency,
            max_queue_length=self.max_queue_length,
        )

    def get_stats(self) -> dict:
        """Get queue statistics for monitoring.

        Returns:
            Dictionary with current and cumulative stats
        """
        return {
            "active": self._active_count,
            "queued": len(self._pending),
            "max_concurrency": self.max_concurrency,
            "max_queue_length": self.max_queue_length,
            "utilization": round(self._active_count / self.max_concurrency, 4),
            "total_completed": self._completed_total,
            "total_failed": self._failed_total,
            "total_rejected": self._rejected_total,
        }

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is running or pending (useful for tests and shutdown).

        Raises:
            TimeoutError: If jobs are still running after ``timeout`` seconds.
                The jobs themselves are left running.
        """
        async def _drain() -> None:
            while self._tasks or self._pending:
                if self._tasks:
                    await asyncio.wait(list(self._tasks))
                else:
                    await asyncio.sleep(0)

        await asyncio.wait_for(_drain(), timeout=timeout)

"""
WorkerPool - Fixed-concurrency job execution for one service.

Each worker owns a one-slot job queue which it posts to the pool's idle
queue whenever it is free. The dispatch task takes the next submitted job
and hands it to the next idle worker, so work goes to whichever worker
frees up first.

``submit`` never waits: a full queue raises ``QueueFullError`` immediately.
The pool never retries a job.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from feedboard.services.errors import (
    ContextCancelledError,
    QueueFullError,
    ServiceError,
)

T = TypeVar("T")


def _new_future() -> asyncio.Future[Any]:
    return asyncio.get_running_loop().create_future()


@dataclass
class Job(Generic[T]):
    """
    A unit of work with a typed result.

    ``result`` is resolved exactly once by the worker that ran the job. A
    waiter that gives up may cancel it; the worker then discards the outcome.
    ``deadline`` is an event loop timestamp (``loop.time()``).
    """

    function: Callable[[], Awaitable[T]]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    deadline: float | None = None
    result: asyncio.Future[T] = field(default_factory=_new_future)


@dataclass
class PoolStats:
    name: str
    workers: int
    queue_size: int
    busy: int = 0
    queued: int = 0
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "workers": self.workers,
            "queue_size": self.queue_size,
            "busy": self.busy,
            "queued": self.queued,
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "rejected": self.rejected,
        }


class WorkerPool:
    """
    Bounded worker pool.

    Usage:
        pool = WorkerPool("gitee", max_workers=4, queue_size=100)
        pool.start()

        job = Job(function=lambda: client.request(req))
        pool.submit(job)          # raises QueueFullError on overflow
        response = await job.result

        await pool.stop()
    """

    def __init__(self, name: str, max_workers: int, queue_size: int):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.name = name
        self.max_workers = max_workers
        self.queue_size = queue_size

        self._jobs: asyncio.Queue[Job[Any]] = asyncio.Queue(maxsize=queue_size)
        self._idle_workers: asyncio.Queue[asyncio.Queue[Job[Any]]] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._stats = PoolStats(name=name, workers=max_workers, queue_size=queue_size)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Spawn the workers and the dispatch loop. Must run inside an event loop."""
        if self._running:
            return
        self._running = True
        for index in range(self.max_workers):
            self._tasks.append(
                asyncio.create_task(self._worker(index), name=f"{self.name}-worker-{index}")
            )
        self._tasks.append(
            asyncio.create_task(self._dispatch(), name=f"{self.name}-dispatch")
        )
        logger.debug(
            f"Worker pool '{self.name}' started: {self.max_workers} workers, "
            f"queue {self.queue_size}"
        )

    async def stop(self) -> None:
        """
        Stop the dispatch loop and every worker.

        Jobs still queued are left unresolved; their waiters must rely on
        their own deadline or cancellation.
        """
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.debug(f"Worker pool '{self.name}' stopped ({self._jobs.qsize()} jobs dropped)")

    def submit(self, job: Job[Any]) -> None:
        """Enqueue a job without waiting."""
        if not self._running:
            raise ServiceError(f"Worker pool '{self.name}' is not running", self.name)
        try:
            self._jobs.put_nowait(job)
        except asyncio.QueueFull:
            self._stats.rejected += 1
            raise QueueFullError(self.name, self.queue_size) from None
        self._stats.submitted += 1

    async def _dispatch(self) -> None:
        while True:
            job = await self._jobs.get()
            worker = await self._idle_workers.get()
            worker.put_nowait(job)

    async def _worker(self, index: int) -> None:
        inbox: asyncio.Queue[Job[Any]] = asyncio.Queue(maxsize=1)
        while True:
            await self._idle_workers.put(inbox)
            job = await inbox.get()
            await self._run(job)

    async def _run(self, job: Job[Any]) -> None:
        if job.result.done():
            # Waiter already gave up
            return

        loop = asyncio.get_running_loop()
        if job.deadline is not None and loop.time() >= job.deadline:
            job.result.set_exception(ContextCancelledError(self.name))
            return

        self._stats.busy += 1
        try:
            value = await job.function()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.failed += 1
            logger.debug(f"Job {job.id} on '{self.name}' failed: {e}")
            if not job.result.done():
                job.result.set_exception(e)
        else:
            self._stats.completed += 1
            if not job.result.done():
                job.result.set_result(value)
        finally:
            self._stats.busy -= 1

    def get_stats(self) -> PoolStats:
        self._stats.queued = self._jobs.qsize()
        return self._stats

"""In-process asynchronous work queue.

Jobs are dispatched to handlers registered per job type and executed by a
small pool of worker tasks. Each job retries with exponential backoff as
configured in its JobOptions. Completed jobs are dropped when
``remove_on_complete`` is set; failed jobs are kept for inspection unless
``remove_on_fail`` is set. Only the most recent ``max_retained`` jobs of
each kind are kept.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from core.config import JobOptions

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RETAINED = 100

JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class Job:
    id: int
    type: str
    payload: dict[str, Any]
    options: JobOptions
    attempts_made: int = 0
    status: str = "waiting"
    error: Optional[str] = None
    result: Any = None


@dataclass
class _QueueState:
    completed: deque[Job]
    failed: deque[Job]


class AsyncioJobQueue:
    """Satisfies JobQueuePort with asyncio tasks instead of a broker."""

    def __init__(self, workers: int = 1, max_retained: int = DEFAULT_MAX_RETAINED) -> None:
        self._workers = max(1, workers)
        self._handlers: dict[str, JobHandler] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []
        self._ids = itertools.count(1)
        self._state = _QueueState(completed=deque(maxlen=max_retained), failed=deque(maxlen=max_retained))

    @property
    def completed_jobs(self) -> list[Job]:
        return list(self._state.completed)

    @property
    def failed_jobs(self) -> list[Job]:
        return list(self._state.failed)

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    def start(self) -> None:
        """Spawn worker tasks on the running loop."""

        if self._tasks:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        for index in range(self._workers):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"job-worker-{index}"))
        LOGGER.info("Job queue started with %s workers", self._workers)

    async def enqueue(self, job_type: str, payload: dict[str, Any], options: JobOptions) -> Job:
        if job_type not in self._handlers:
            raise ValueError(f"No handler registered for job type {job_type!r}")
        if self._queue is None:
            self._queue = asyncio.Queue()
        job = Job(id=next(self._ids), type=job_type, payload=dict(payload), options=options)
        await self._queue.put(job)
        return job

    async def close(self) -> None:
        """Wait for queued jobs to finish, then stop the workers."""

        if self._queue is not None and self._tasks:
            await self._queue.join()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        LOGGER.info("Job queue closed")

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
            finally:
                self._queue.task_done()

    async def run_job(self, job: Job) -> Job:
        """Execute one job with its retry budget and record the outcome."""

        handler = self._handlers[job.type]
        job.status = "active"
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, job.options.attempts)),
            wait=self._wait_for(job.options),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    job.attempts_made += 1
                    job.result = await handler(job.payload)
        except Exception as exc:
            job.status = "failed"
            job.error = f"{type(exc).__name__}: {exc}"
            LOGGER.error("Job %s (%s) failed after %s attempts", job.id, job.type, job.attempts_made)
            if not job.options.remove_on_fail:
                self._state.failed.append(job)
            return job

        job.status = "completed"
        if not job.options.remove_on_complete:
            self._state.completed.append(job)
        return job

    @staticmethod
    def _wait_for(options: JobOptions):
        if options.backoff_type == "fixed":
            return wait_exponential(multiplier=options.backoff_delay, exp_base=1)
        return wait_exponential(multiplier=options.backoff_delay)

"""Worker pool consuming a job queue."""

import asyncio
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog

from source_sync.errors import UnrecoverableError
from source_sync.observability import JOB_LATENCY, JOBS_PROCESSED
from source_sync.queue.queue import Job, JobQueue

logger = structlog.get_logger()

Processor = Callable[[Job], Awaitable[Any]]
Listener = Callable[[Job, Any], Awaitable[None]]

EVENTS = ("completed", "failed")


class Worker:
    """
    Run a processor over the jobs of a queue with bounded concurrency.

    Listeners registered with ``on`` receive ``(job, result)`` for
    "completed" and ``(job, failed_reason)`` for "failed". "failed" fires
    only once retries are exhausted or the error is unrecoverable.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        concurrency: int = 1,
        poll_interval: float = 0.5,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._closing = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def on(self, event: str, listener: Listener) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown worker event: {event}")
        self._listeners[event].append(listener)

    async def process_next(self) -> bool:
        """Process one job. Returns False when no job was ready."""
        job = await self.queue.fetch_next()
        if job is None:
            return False

        log = logger.bind(queue=self.queue.name, job_id=job.id, job_name=job.name)
        start = time.perf_counter()
        try:
            result = await self.processor(job)
        except Exception as e:
            reason = str(e) or type(e).__name__
            retry = not isinstance(e, UnrecoverableError)
            terminal = await self.queue.fail(job, reason, retry=retry)
            JOB_LATENCY.labels(queue=self.queue.name).observe(time.perf_counter() - start)

            if terminal:
                JOBS_PROCESSED.labels(queue=self.queue.name, status="failed").inc()
                log.error("job_failed", reason=reason, attempts=job.attempts_made)
                await self._emit("failed", job, reason)
            else:
                JOBS_PROCESSED.labels(queue=self.queue.name, status="retried").inc()
                log.warning(
                    "job_retry_scheduled",
                    reason=reason,
                    attempts=job.attempts_made,
                    delay_ms=job.backoff_ms(),
                )
            return True

        await self.queue.complete(job)
        JOB_LATENCY.labels(queue=self.queue.name).observe(time.perf_counter() - start)
        JOBS_PROCESSED.labels(queue=self.queue.name, status="completed").inc()
        log.debug("job_completed")
        await self._emit("completed", job, result)
        return True

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process ready jobs until none is left. Returns the number handled."""
        handled = 0
        while max_jobs is None or handled < max_jobs:
            if not await self.process_next():
                break
            handled += 1
        return handled

    async def run(self) -> None:
        """Process jobs with ``concurrency`` slots until closed."""
        await self.queue.recover_stalled()
        logger.info("worker_started", queue=self.queue.name, concurrency=self.concurrency)
        self._tasks = [asyncio.create_task(self._slot()) for _ in range(self.concurrency)]
        await asyncio.gather(*self._tasks)
        logger.info("worker_stopped", queue=self.queue.name)

    async def close(self) -> None:
        """Stop taking jobs and wait for in-flight ones to finish."""
        self._closing.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _slot(self) -> None:
        while not self._closing.is_set():
            try:
                handled = await self.process_next()
            except Exception:
                # Broker errors; keep the slot alive
                logger.exception("worker_slot_error", queue=self.queue.name)
                handled = False
            if not handled:
                try:
                    await asyncio.wait_for(self._closing.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def _emit(self, event: str, job: Job, payload: Any) -> None:
        for listener in self._listeners[event]:
            try:
                await listener(job, payload)
            except Exception:
                logger.exception(
                    "worker_listener_failed", queue=self.queue.name, job_id=job.id, event=event
                )

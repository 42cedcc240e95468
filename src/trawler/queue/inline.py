"""In-process job queue used when no Redis broker is reachable.

``enqueue`` runs the job to completion before returning. Jobs are not
durable: a process exit loses anything in flight. ``status().is_available``
is False so metrics and health report the degraded mode.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from trawler.errors import is_retryable
from trawler.queue.base import Handlers, Job, JobQueue, QueueStatus

logger = logging.getLogger(__name__)


@dataclass
class JobRecord:
    job_id: str
    name: str
    success: bool
    tries: int
    result: Any = None
    error: str | None = None


class InlineJobQueue(JobQueue):
    """Execute jobs immediately in the caller's event loop.

    Retryable failures are retried with exponential backoff up to
    *max_tries* attempts; the final failure is recorded (``failed`` counter,
    ``last_error``, ``results[job_id]``) instead of raised, as a broker
    would mark the job failed.

    Args:
        handlers: Job name → coroutine function.
        max_tries: Attempts per job, including the first.
        retry_backoff: Seconds before the first retry; doubled each retry.
    """

    mode = "inline"

    def __init__(self, handlers: Handlers, max_tries: int = 3, retry_backoff: float = 2.0) -> None:
        if max_tries < 1:
            raise ValueError("max_tries must be >= 1")
        self._handlers = dict(handlers)
        self.max_tries = max_tries
        self.retry_backoff = retry_backoff
        self._running: set[str] = set()
        self._waiting = 0
        self._active = 0
        self._completed = 0
        self._failed = 0
        self._last_error: str | None = None
        self.results: dict[str, JobRecord] = {}

    async def enqueue(self, job: Job) -> str:
        handler = self._handlers.get(job.name)
        if handler is None:
            raise ValueError(f"Unknown job '{job.name}'")
        job_id = job.job_id or f"{job.name}-{uuid.uuid4().hex[:12]}"
        if job_id in self._running:
            logger.info("Job %s is already running; not starting it twice", job_id)
            return job_id

        self._running.add(job_id)
        self._active += 1
        try:
            self.results[job_id] = await self._run(job_id, job, handler)
        finally:
            self._active -= 1
            self._running.discard(job_id)
        return job_id

    async def _run(self, job_id: str, job: Job, handler: Any) -> JobRecord:
        for attempt in range(1, self.max_tries + 1):
            try:
                result = await handler(**job.kwargs)
            except Exception as exc:
                if is_retryable(exc) and attempt < self.max_tries:
                    delay = self.retry_backoff * 2 ** (attempt - 1)
                    logger.warning(
                        "Job %s try %d/%d failed, retrying in %.1fs: %s",
                        job_id, attempt, self.max_tries, delay, exc,
                    )
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue
                self._failed += 1
                self._last_error = f"{job_id}: {exc}"
                logger.error("Job %s failed after %d try(s): %s", job_id, attempt, exc)
                return JobRecord(job_id, job.name, False, attempt, error=str(exc))
            self._completed += 1
            logger.debug("Job %s completed on try %d", job_id, attempt)
            return JobRecord(job_id, job.name, True, attempt, result=result)
        raise AssertionError("retry loop exited without a result")

    async def status(self) -> QueueStatus:
        return QueueStatus(
            waiting=self._waiting,
            active=self._active,
            completed=self._completed,
            failed=self._failed,
            is_available=False,
            mode=self.mode,
            last_error=self._last_error,
        )

"""Redis-backed job queue on arq.

Jobs are consumed by ``trawler worker`` (``trawler.queue.worker.WorkerSettings``).
Enqueueing a job id that is still queued or running returns the existing
id instead of scheduling a duplicate; an id whose previous run already
finished is scheduled again.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.constants import in_progress_key_prefix, job_key_prefix, result_key_prefix

from trawler.queue.base import Job, JobQueue, QueueStatus

logger = logging.getLogger(__name__)


def get_redis_settings(redis_url: str, conn_retries: int = 5) -> RedisSettings:
    """Parse a ``redis://`` URL into arq RedisSettings."""
    parsed = urlparse(redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_retries=conn_retries,
    )


class ArqJobQueue(JobQueue):
    """Enqueue jobs on an arq Redis pool.

    Args:
        redis: Connected ``ArqRedis`` pool (see ``connect``).
        queue_name: arq queue the worker listens on.
    """

    mode = "arq"

    def __init__(self, redis: ArqRedis, queue_name: str = "trawler:jobs") -> None:
        self._redis = redis
        self.queue_name = queue_name
        self._last_error: str | None = None

    @classmethod
    async def connect(
        cls, redis_url: str, queue_name: str = "trawler:jobs", conn_retries: int = 5
    ) -> ArqJobQueue:
        pool = await create_pool(
            get_redis_settings(redis_url, conn_retries), default_queue_name=queue_name
        )
        return cls(pool, queue_name)

    @property
    def redis(self) -> ArqRedis:
        return self._redis

    async def enqueue(self, job: Job) -> str:
        queued = await self._redis.enqueue_job(
            job.name, _job_id=job.job_id, _queue_name=self.queue_name, **job.kwargs
        )
        if queued is not None:
            logger.info("Enqueued %s as %s", job.name, queued.job_id)
            return queued.job_id

        # arq refuses an id that still has a job or a result key.
        job_id = job.job_id or ""
        if await self._redis.exists(job_key_prefix + job_id):
            logger.info("Job %s is already queued or running; coalesced", job_id)
            return job_id
        await self._redis.delete(result_key_prefix + job_id)
        queued = await self._redis.enqueue_job(
            job.name, _job_id=job_id, _queue_name=self.queue_name, **job.kwargs
        )
        if queued is None:
            logger.info("Job %s was enqueued concurrently; coalesced", job_id)
            return job_id
        logger.info("Enqueued %s as %s (previous result cleared)", job.name, job_id)
        return queued.job_id

    async def status(self) -> QueueStatus:
        waiting = await self._redis.zcard(self.queue_name)
        active = 0
        async for _ in self._redis.scan_iter(match=in_progress_key_prefix + "*"):
            active += 1
        results = await self._redis.all_job_results()
        failed = [r for r in results if not r.success]
        if failed:
            latest = max(failed, key=lambda r: r.finish_time)
            self._last_error = f"{latest.job_id}: {latest.result}"
        return QueueStatus(
            waiting=waiting,
            active=active,
            completed=len(results) - len(failed),
            failed=len(failed),
            is_available=True,
            mode=self.mode,
            last_error=self._last_error,
        )

    async def close(self) -> None:
        await self._redis.aclose()

"""Pick the job queue once at startup: arq when Redis answers, inline otherwise."""

from __future__ import annotations

import asyncio
import logging

from redis.exceptions import RedisError

from trawler.config import QueueCfg
from trawler.queue.arq_queue import ArqJobQueue
from trawler.queue.base import Handlers, JobQueue
from trawler.queue.inline import InlineJobQueue

logger = logging.getLogger(__name__)


async def create_job_queue(config: QueueCfg, handlers: Handlers) -> JobQueue:
    """Return an ``ArqJobQueue`` if ``config.redis_url`` is reachable.

    An empty URL or a failed connection selects ``InlineJobQueue``, which
    runs *handlers* in-process. The fallback is logged as a warning and
    reported by ``status().is_available``.
    """
    if not config.redis_url:
        logger.info("No Redis URL configured; jobs run inline")
        return _inline(config, handlers)
    try:
        queue = await ArqJobQueue.connect(config.redis_url, config.queue_name, conn_retries=1)
    except (RedisError, OSError, asyncio.TimeoutError) as exc:
        logger.warning(
            "Redis at %s unreachable (%s); falling back to inline job execution",
            config.redis_url, exc,
        )
        return _inline(config, handlers)
    logger.info("Job queue: arq on %s (%s)", config.redis_url, config.queue_name)
    return queue


def _inline(config: QueueCfg, handlers: Handlers) -> InlineJobQueue:
    return InlineJobQueue(handlers, max_tries=config.max_tries, retry_backoff=config.retry_backoff)

"""arq worker for crawl, re-crawl and embedding jobs.

Usage:
    # Start the worker
    trawler worker --db .trawler.db

    # Or with arq directly
    TRAWLER_DB=.trawler.db arq trawler.queue.worker.WorkerSettings

Configuration comes from ``trawler.yaml`` in ``TRAWLER_PROJECT_DIR`` (default:
the current directory) plus the global config and environment overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from arq.cron import cron
from arq.worker import Retry

from trawler.config import load_config
from trawler.errors import is_retryable
from trawler.events import RedisPublisher
from trawler.log import setup_logging
from trawler.queue.arq_queue import get_redis_settings
from trawler.queue.base import CRAWL_SOURCE, EMBED_AGENT, RECRAWL_SOURCE
from trawler.service import KnowledgeBase

logger = logging.getLogger(__name__)

_PROJECT_DIR = Path(os.environ.get("TRAWLER_PROJECT_DIR", "."))
_DB_PATH = Path(os.environ.get("TRAWLER_DB", _PROJECT_DIR / ".trawler.db"))

config = load_config(_PROJECT_DIR)


def retry_defer(job_try: int, backoff: float) -> float:
    """Seconds before try ``job_try + 1``: backoff, 2×backoff, 4×backoff, ..."""
    return backoff * 2 ** (job_try - 1)


async def _run(ctx: dict, name: str, **kwargs: Any) -> dict[str, Any]:
    kb: KnowledgeBase = ctx["kb"]
    try:
        return await kb.handlers[name](**kwargs)
    except Exception as exc:
        job_try = ctx.get("job_try", 1)
        if is_retryable(exc) and job_try < config.queue.max_tries:
            defer = retry_defer(job_try, config.queue.retry_backoff)
            logger.warning("%s try %d failed, retrying in %.1fs: %s", name, job_try, defer, exc)
            raise Retry(defer=defer) from exc
        logger.exception("%s failed permanently on try %d", name, job_try)
        raise


async def crawl_source(
    ctx: dict, source_id: str, url: str | None = None, policy: dict | None = None
) -> dict[str, Any]:
    """Crawl one website source and replace its chunks."""
    return await _run(ctx, CRAWL_SOURCE, source_id=source_id, url=url, policy=policy)


async def recrawl_source(ctx: dict, source_id: str) -> dict[str, Any]:
    """Safe re-crawl of one website source."""
    return await _run(ctx, RECRAWL_SOURCE, source_id=source_id)


async def embed_agent(ctx: dict, agent_id: str) -> dict[str, Any]:
    """Embed every pending chunk of one agent."""
    return await _run(ctx, EMBED_AGENT, agent_id=agent_id)


async def reap_stuck_sources(ctx: dict) -> dict[str, Any]:
    """Scheduled watchdog: fail sources stuck in ``processing``."""
    reaped = ctx["kb"].reap_stuck_sources()
    return {"reaped": reaped}


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    setup_logging(config.logging.level, config.logging.json)
    # The worker runs jobs itself; it never enqueues back into the broker.
    kb = KnowledgeBase(_DB_PATH, config, use_broker=False)
    await kb.start()
    if ctx.get("redis") is not None:
        kb.publisher.add(RedisPublisher(ctx["redis"]))
    ctx["kb"] = kb
    logger.info("Trawler worker starting on %s", _DB_PATH)


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook."""
    kb: KnowledgeBase | None = ctx.get("kb")
    if kb is not None:
        await kb.close()
    logger.info("Trawler worker shutting down")


class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection
    redis_settings = get_redis_settings(config.queue.redis_url or "redis://localhost:6379/0")

    # Task functions
    functions = [crawl_source, recrawl_source, embed_agent]

    # Scheduled tasks (cron jobs)
    cron_jobs = [
        cron(reap_stuck_sources, minute={0, 15, 30, 45}, unique=True, run_at_startup=True),
    ]

    on_startup = startup
    on_shutdown = shutdown

    # Job settings
    queue_name = config.queue.queue_name
    max_jobs = config.queue.max_jobs
    job_timeout = config.queue.job_timeout
    max_tries = config.queue.max_tries
    keep_result = 3600  # Keep results for 1 hour

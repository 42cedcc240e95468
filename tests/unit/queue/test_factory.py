"""Tests for job queue selection."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from trawler.config import QueueCfg
from trawler.queue.arq_queue import ArqJobQueue
from trawler.queue.factory import create_job_queue
from trawler.queue.inline import InlineJobQueue


@pytest.mark.asyncio
async def test_no_url_selects_inline():
    queue = await create_job_queue(QueueCfg(max_tries=4, retry_backoff=0.5), {})
    assert isinstance(queue, InlineJobQueue)
    assert queue.max_tries == 4
    assert queue.retry_backoff == 0.5


@pytest.mark.asyncio
async def test_unreachable_redis_falls_back(caplog):
    connect = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    with patch.object(ArqJobQueue, "connect", connect), caplog.at_level(logging.WARNING):
        queue = await create_job_queue(QueueCfg(redis_url="redis://localhost:1/0"), {})

    assert isinstance(queue, InlineJobQueue)
    assert "falling back to inline" in caplog.text


@pytest.mark.asyncio
async def test_reachable_redis_selects_arq():
    arq_queue = ArqJobQueue(AsyncMock(), "q")
    connect = AsyncMock(return_value=arq_queue)
    with patch.object(ArqJobQueue, "connect", connect):
        queue = await create_job_queue(QueueCfg(redis_url="redis://cache:6379/2", queue_name="q"), {})

    assert queue is arq_queue
    connect.assert_awaited_once_with("redis://cache:6379/2", "q", conn_retries=1)

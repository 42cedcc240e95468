"""Tests for the in-process job queue."""

from __future__ import annotations

import asyncio

import pytest

from trawler.errors import FetchError, SourceNotFoundError
from trawler.queue.base import Job, crawl_job_id
from trawler.queue.inline import InlineJobQueue


def _queue(handlers, **kwargs) -> InlineJobQueue:
    kwargs.setdefault("retry_backoff", 0)
    return InlineJobQueue(handlers, **kwargs)


@pytest.mark.asyncio
async def test_runs_job_to_completion():
    calls = []

    async def crawl_source(source_id):
        calls.append(source_id)
        return {"status": "ready"}

    queue = _queue({"crawl_source": crawl_source})
    job_id = await queue.enqueue(Job("crawl_source", {"source_id": "s1"}, crawl_job_id("s1")))

    assert job_id == "crawl-s1"
    assert calls == ["s1"]
    record = queue.results[job_id]
    assert record.success
    assert record.result == {"status": "ready"}
    status = await queue.status()
    assert (status.completed, status.failed, status.active) == (1, 0, 0)
    assert status.is_available is False
    assert status.mode == "inline"


@pytest.mark.asyncio
async def test_generated_job_id():
    async def embed_agent(agent_id):
        return None

    job_id = await _queue({"embed_agent": embed_agent}).enqueue(Job("embed_agent", {"agent_id": "a"}))
    assert job_id.startswith("embed_agent-")


@pytest.mark.asyncio
async def test_unknown_job():
    with pytest.raises(ValueError, match="Unknown job"):
        await _queue({}).enqueue(Job("nope"))


@pytest.mark.asyncio
async def test_retryable_failure_retried():
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise FetchError("temporary")
        return "ok"

    queue = _queue({"flaky": flaky}, max_tries=3)
    job_id = await queue.enqueue(Job("flaky"))
    assert queue.results[job_id].success
    assert queue.results[job_id].tries == 3


@pytest.mark.asyncio
async def test_failure_recorded_after_max_tries():
    async def broken():
        raise FetchError("still down")

    queue = _queue({"broken": broken}, max_tries=2)
    job_id = await queue.enqueue(Job("broken", job_id="j1"))

    record = queue.results[job_id]
    assert not record.success
    assert record.tries == 2
    status = await queue.status()
    assert status.failed == 1
    assert status.last_error == "j1: still down"


@pytest.mark.asyncio
async def test_non_retryable_fails_first_try():
    async def missing():
        raise SourceNotFoundError("Source x not found")

    queue = _queue({"missing": missing}, max_tries=5)
    job_id = await queue.enqueue(Job("missing"))
    assert queue.results[job_id].tries == 1


@pytest.mark.asyncio
async def test_same_id_while_running_is_coalesced():
    started = asyncio.Event()
    release = asyncio.Event()
    runs = 0

    async def slow():
        nonlocal runs
        runs += 1
        started.set()
        await release.wait()

    queue = _queue({"slow": slow})
    first = asyncio.create_task(queue.enqueue(Job("slow", job_id="crawl-s1")))
    await started.wait()
    assert (await queue.status()).active == 1

    assert await queue.enqueue(Job("slow", job_id="crawl-s1")) == "crawl-s1"
    release.set()
    await first
    assert runs == 1


def test_max_tries_must_be_positive():
    with pytest.raises(ValueError):
        InlineJobQueue({}, max_tries=0)

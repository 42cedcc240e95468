"""Tests for event publishers."""

from __future__ import annotations

import json
import logging

import pytest

from trawler.events import (
    FanoutPublisher,
    LogPublisher,
    MemoryPublisher,
    RedisPublisher,
    crawl_topic,
    safe_publish,
)


class _FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


class _BrokenPublisher:
    async def publish(self, topic, event):
        raise ConnectionError("channel closed")


def test_crawl_topic():
    assert crawl_topic("src-1") == "crawl:src-1"


@pytest.mark.asyncio
async def test_memory_publisher_groups_by_topic():
    pub = MemoryPublisher()
    await pub.publish("crawl:a", {"status": "progress", "current": 1})
    await pub.publish("crawl:a", {"status": "ready"})
    await pub.publish("crawl:b", {"status": "error"})

    assert len(pub.events["crawl:a"]) == 2
    assert pub.last("crawl:a") == {"status": "ready"}
    assert pub.last("crawl:missing") is None


@pytest.mark.asyncio
async def test_memory_publisher_copies_events():
    pub = MemoryPublisher()
    event = {"status": "progress"}
    await pub.publish("t", event)
    event["status"] = "mutated"
    assert pub.last("t") == {"status": "progress"}


@pytest.mark.asyncio
async def test_redis_publisher_prefixes_channel_and_encodes_json():
    redis = _FakeRedis()
    pub = RedisPublisher(redis)
    await pub.publish("crawl:src-1", {"status": "ready", "chunks": 3})

    channel, message = redis.published[0]
    assert channel == "trawler:crawl:src-1"
    assert json.loads(message) == {"status": "ready", "chunks": 3}


@pytest.mark.asyncio
async def test_log_publisher_logs(caplog):
    pub = LogPublisher(logging.INFO)
    with caplog.at_level(logging.INFO, logger="trawler.events"):
        await pub.publish("crawl:x", {"status": "ready"})
    assert "crawl:x" in caplog.text


@pytest.mark.asyncio
async def test_fanout_survives_failing_sink():
    good = MemoryPublisher()
    fanout = FanoutPublisher(_BrokenPublisher())
    fanout.add(good)

    await fanout.publish("crawl:x", {"status": "ready"})
    assert good.last("crawl:x") == {"status": "ready"}


@pytest.mark.asyncio
async def test_safe_publish_logs_instead_of_raising(caplog):
    with caplog.at_level(logging.WARNING, logger="trawler.events"):
        await safe_publish(_BrokenPublisher(), "crawl:x", {})
    assert "channel closed" in caplog.text

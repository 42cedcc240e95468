"""Progress/event publishing: ``publish(topic, event)`` over pluggable sinks.

Crawl progress is published on ``crawl:{source_id}``. The orchestrator
depends only on the ``EventPublisher`` protocol; the sink may be the log,
an in-memory list, a Redis pub/sub channel, or several at once.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


def crawl_topic(source_id: str) -> str:
    """Topic carrying progress and terminal events for one source."""
    return f"crawl:{source_id}"


class EventPublisher(Protocol):
    async def publish(self, topic: str, event: dict[str, Any]) -> None: ...


class LogPublisher:
    """Write every event to the ``trawler.events`` logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def publish(self, topic: str, event: dict[str, Any]) -> None:
        logger.log(self._level, "%s %s", topic, json.dumps(event, default=str))


class MemoryPublisher:
    """Keep events in memory, grouped by topic."""

    def __init__(self) -> None:
        self.events: dict[str, list[dict[str, Any]]] = defaultdict(list)

    async def publish(self, topic: str, event: dict[str, Any]) -> None:
        self.events[topic].append(dict(event))

    def last(self, topic: str) -> dict[str, Any] | None:
        events = self.events.get(topic)
        return events[-1] if events else None


class RedisPublisher:
    """Publish JSON-encoded events on Redis pub/sub channels.

    Args:
        redis: A ``redis.asyncio.Redis`` client (an arq pool works too).
        prefix: Prepended to every topic to form the channel name.
    """

    def __init__(self, redis: Any, prefix: str = "trawler:") -> None:
        self._redis = redis
        self._prefix = prefix

    async def publish(self, topic: str, event: dict[str, Any]) -> None:
        await self._redis.publish(self._prefix + topic, json.dumps(event, default=str))


class FanoutPublisher:
    """Deliver each event to every sink; one failing sink does not stop the rest."""

    def __init__(self, *sinks: EventPublisher) -> None:
        self._sinks = list(sinks)

    def add(self, sink: EventPublisher) -> None:
        self._sinks.append(sink)

    async def publish(self, topic: str, event: dict[str, Any]) -> None:
        for sink in self._sinks:
            await safe_publish(sink, topic, event)


async def safe_publish(publisher: EventPublisher, topic: str, event: dict[str, Any]) -> None:
    """Publish, logging instead of raising if the transport fails.

    Progress delivery is best effort; a dead channel never aborts a crawl.
    """
    try:
        await publisher.publish(topic, event)
    except Exception as exc:
        logger.warning("Event publish to %s failed: %s", topic, exc)

"""Job queue interface shared by the broker-backed and inline implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

# Job name → coroutine function called with the job's kwargs.
Handlers = dict[str, Callable[..., Awaitable[Any]]]

CRAWL_SOURCE = "crawl_source"
RECRAWL_SOURCE = "recrawl_source"
EMBED_AGENT = "embed_agent"


@dataclass
class Job:
    """A unit of background work.

    Attributes:
        name: Registered function name (``crawl_source``, ``recrawl_source``,
            ``embed_agent``).
        kwargs: Keyword arguments for the function; must be JSON/pickle-safe.
        job_id: Stable id. Enqueueing an id that is already queued or running
            is coalesced into the existing job.
    """

    name: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    job_id: str | None = None


@dataclass
class QueueStatus:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    is_available: bool = False
    mode: str = "inline"
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "is_available": self.is_available,
            "mode": self.mode,
            "last_error": self.last_error,
        }


class JobQueue(ABC):
    """``enqueue`` / ``status`` / ``close``; chosen once by ``create_job_queue``."""

    mode: str = ""

    @abstractmethod
    async def enqueue(self, job: Job) -> str:
        """Schedule *job* and return its id."""

    @abstractmethod
    async def status(self) -> QueueStatus:
        """Current depth and outcome counters."""

    async def close(self) -> None:
        """Release broker connections. No-op by default."""


def crawl_job_id(source_id: str) -> str:
    return f"crawl-{source_id}"

"""Read-only operational metrics and derived health status.

Health, most severe first:
  critical  memory > 90 % or any source in the critical state
  degraded  more than 10 failed jobs
  busy      every browser slot launched (browsers >= max_browsers)
  healthy   otherwise
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import psutil

from trawler.crawl.cache import CrawlCache
from trawler.crawl.pool import BrowserPool, PoolStats
from trawler.db.models import SourceStatus
from trawler.db.repository import Repository
from trawler.queue.base import JobQueue, QueueStatus

RECENT_CRAWLS = 10

_MEMORY_CRITICAL = 90.0
_MEMORY_WARNING = 80.0
_FAILED_DEGRADED = 10
_FAILED_WARNING = 5
_WAITING_WARNING = 50
_POOL_WARNING = 0.8


@dataclass
class SystemSnapshot:
    memory_percent: float
    rss_mb: float
    uptime_s: float

    def to_dict(self) -> dict[str, float]:
        return {
            "memory_percent": self.memory_percent,
            "rss_mb": round(self.rss_mb, 1),
            "uptime_s": round(self.uptime_s, 1),
        }


def system_snapshot(started_at: float) -> SystemSnapshot:
    """Host memory use and this process's RSS, via psutil."""
    rss = psutil.Process().memory_info().rss
    return SystemSnapshot(
        memory_percent=psutil.virtual_memory().percent,
        rss_mb=rss / 1024 / 1024,
        uptime_s=time.monotonic() - started_at,
    )


def determine_health(
    memory_percent: float,
    pool: PoolStats,
    queue: QueueStatus,
    critical_sources: int = 0,
) -> str:
    if memory_percent > _MEMORY_CRITICAL or critical_sources > 0:
        return "critical"
    if queue.failed > _FAILED_DEGRADED:
        return "degraded"
    if pool.browsers >= pool.max_browsers:
        return "busy"
    return "healthy"


def health_warnings(
    memory_percent: float,
    pool: PoolStats,
    queue: QueueStatus,
    critical_sources: int = 0,
    stuck_sources: int = 0,
) -> list[str]:
    """Human-readable warnings, one per tripped threshold."""
    warnings: list[str] = []
    if memory_percent > _MEMORY_WARNING:
        warnings.append(f"High memory usage: {memory_percent:.0f}%")
    if pool.browsers >= pool.max_browsers * _POOL_WARNING:
        warnings.append(f"Browser pool near capacity: {pool.browsers}/{pool.max_browsers}")
    if queue.failed > _FAILED_WARNING:
        warnings.append(f"{queue.failed} failed job(s) in the queue")
    if queue.waiting > _WAITING_WARNING:
        warnings.append(f"{queue.waiting} job(s) waiting in the queue")
    if not queue.is_available:
        warnings.append("Job broker unavailable; jobs run inline without durability")
    if pool.lease_timeouts:
        warnings.append(f"{pool.lease_timeouts} browser lease timeout(s) observed")
    if critical_sources:
        warnings.append(f"{critical_sources} source(s) need manual intervention (critical)")
    if stuck_sources:
        warnings.append(f"{stuck_sources} source(s) stuck in processing")
    return warnings


async def collect_metrics(
    repo: Repository,
    pool: BrowserPool,
    cache: CrawlCache,
    queue: JobQueue,
    *,
    stuck_after: float,
    started_at: float,
    system: SystemSnapshot | None = None,
) -> dict[str, Any]:
    """Assemble the metrics document.

    Args:
        stuck_after: Seconds without an update before a ``processing``
            source counts as stuck.
        started_at: ``time.monotonic()`` at service start, for uptime.
        system: Pre-sampled host metrics; sampled with psutil when None.
    """
    system = system or system_snapshot(started_at)
    pool_stats = pool.stats()
    queue_status = await queue.status()
    by_status = repo.count_sources_by_status()
    critical = by_status.get(SourceStatus.CRITICAL.value, 0)
    stuck = len(repo.list_stale_processing(stuck_after))

    recent = repo.recent_crawl_stats(RECENT_CRAWLS)
    n = len(recent)
    avg_chunks = sum(c for c, _ in recent) / n if n else 0.0
    avg_size_kb = sum(s for _, s in recent) / n / 1024 if n else 0.0

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "system": system.to_dict(),
        "crawler": {
            "browser_pool": pool_stats.to_dict(),
            "cache": cache.stats().to_dict(),
            "queue": queue_status.to_dict(),
        },
        "performance": {
            "active_crawls": by_status.get(SourceStatus.PROCESSING.value, 0),
            "avg_chunks_per_crawl": round(avg_chunks, 1),
            "avg_size_kb_per_crawl": round(avg_size_kb, 1),
            "total_chunks": repo.count_chunks(),
            "recent_crawls_analyzed": n,
        },
        "sources": {"critical": critical, "stuck": stuck},
        "health": {
            "status": determine_health(system.memory_percent, pool_stats, queue_status, critical),
            "warnings": health_warnings(
                system.memory_percent, pool_stats, queue_status, critical, stuck
            ),
        },
    }

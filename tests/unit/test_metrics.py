"""Tests for operational metrics and health derivation."""

from __future__ import annotations

import pytest

from trawler.crawl.cache import CrawlCache
from trawler.crawl.pool import BrowserPool, PoolStats
from trawler.db.models import Chunk, Source
from trawler.metrics import (
    SystemSnapshot,
    collect_metrics,
    determine_health,
    health_warnings,
    system_snapshot,
)
from trawler.queue.base import QueueStatus
from trawler.queue.inline import InlineJobQueue


def _pool_stats(browsers=0, max_browsers=3, lease_timeouts=0) -> PoolStats:
    return PoolStats(
        browsers=browsers,
        max_browsers=max_browsers,
        contexts=0,
        max_contexts_per_browser=5,
        lease_timeouts=lease_timeouts,
        launches=browsers,
    )


def _queue(failed=0, waiting=0, available=True) -> QueueStatus:
    return QueueStatus(waiting=waiting, failed=failed, is_available=available, mode="arq")


# ------------------------------------------------------------------
# Health
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "memory, browsers, failed, critical, expected",
    [
        (40.0, 0, 0, 0, "healthy"),
        (40.0, 3, 0, 0, "busy"),
        (40.0, 3, 11, 0, "degraded"),
        (95.0, 3, 11, 0, "critical"),
        (40.0, 0, 0, 1, "critical"),
        (90.0, 0, 10, 0, "healthy"),
    ],
)
def test_determine_health(memory, browsers, failed, critical, expected):
    assert determine_health(memory, _pool_stats(browsers), _queue(failed), critical) == expected


def test_no_warnings_when_idle():
    assert health_warnings(30.0, _pool_stats(), _queue()) == []


def test_warnings_for_each_threshold():
    warnings = health_warnings(
        85.0,
        _pool_stats(browsers=3, lease_timeouts=2),
        _queue(failed=6, waiting=51, available=False),
        critical_sources=1,
        stuck_sources=2,
    )
    text = "\n".join(warnings)
    assert "High memory usage: 85%" in text
    assert "Browser pool near capacity: 3/3" in text
    assert "6 failed job(s)" in text
    assert "51 job(s) waiting" in text
    assert "Job broker unavailable" in text
    assert "2 browser lease timeout(s)" in text
    assert "1 source(s) need manual intervention" in text
    assert "2 source(s) stuck" in text


def test_system_snapshot_reads_process():
    snap = system_snapshot(started_at=0.0)
    assert 0.0 <= snap.memory_percent <= 100.0
    assert snap.rss_mb > 0
    assert set(snap.to_dict()) == {"memory_percent", "rss_mb", "uptime_s"}


# ------------------------------------------------------------------
# Document
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_collect_metrics(repo, launcher):
    repo.add_source(Source(id="w1", agent_id="a", type="website", status="ready", size=4096))
    repo.add_source(Source(id="w2", agent_id="a", type="website", status="critical", size=0))
    repo.add_chunks([Chunk(source_id="w1", agent_id="a", position=i, content="x") for i in range(4)])

    pool = BrowserPool(launcher=launcher, cleanup_interval=0)
    doc = await collect_metrics(
        repo,
        pool,
        CrawlCache(),
        InlineJobQueue({}),
        stuck_after=1800,
        started_at=0.0,
        system=SystemSnapshot(memory_percent=42.0, rss_mb=120.0, uptime_s=5.0),
    )

    assert doc["system"]["memory_percent"] == 42.0
    assert doc["crawler"]["queue"]["mode"] == "inline"
    assert doc["crawler"]["browser_pool"]["utilization"] == "0%"
    assert doc["crawler"]["cache"]["max_entries"] == 100
    perf = doc["performance"]
    assert perf["recent_crawls_analyzed"] == 2
    assert perf["avg_chunks_per_crawl"] == 2.0
    assert perf["avg_size_kb_per_crawl"] == 2.0
    assert perf["total_chunks"] == 4
    assert doc["sources"] == {"critical": 1, "stuck": 0}
    assert doc["health"]["status"] == "critical"
    assert any("broker unavailable" in w for w in doc["health"]["warnings"])
    await pool.shutdown()

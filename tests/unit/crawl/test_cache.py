"""Tests for the TTL + LRU crawl cache."""

from __future__ import annotations

import pytest

from trawler.crawl.cache import CrawlCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return _Clock()


def test_make_key_normalizes_and_includes_options():
    a = CrawlCache.make_key("https://Example.com/page/", {"full_page_content": False})
    b = CrawlCache.make_key("https://example.com/page", {"full_page_content": False})
    c = CrawlCache.make_key("https://example.com/page", {"full_page_content": True})
    assert a == b
    assert a != c


def test_get_put_hit_and_miss(clock):
    cache = CrawlCache(ttl=60, clock=clock)
    assert cache.get("k") is None
    cache.put("k", "v")
    assert cache.get("k") == "v"

    stats = cache.stats()
    assert (stats.hits, stats.misses) == (1, 1)


def test_entry_expires_after_ttl(clock):
    cache = CrawlCache(ttl=60, clock=clock)
    cache.put("k", "v")
    clock.now += 59
    assert cache.get("k") == "v"
    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_per_entry_ttl(clock):
    cache = CrawlCache(ttl=60, clock=clock)
    cache.put("short", 1, ttl=5)
    cache.put("long", 2)
    clock.now += 10
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_lru_eviction(clock):
    cache = CrawlCache(ttl=60, max_entries=2, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")  # b is now least recently used
    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_invalidate_domain_ignores_www(clock):
    cache = CrawlCache(clock=clock)
    cache.put(CrawlCache.make_key("https://www.example.com/a", {"full_page_content": False}), 1)
    cache.put(CrawlCache.make_key("https://example.com/b"), 2)
    cache.put(CrawlCache.make_key("https://other.com/c"), 3)

    assert cache.invalidate_domain("example.com") == 2
    assert len(cache) == 1


def test_invalidate_single_key(clock):
    cache = CrawlCache(clock=clock)
    cache.put("k", 1)
    assert cache.invalidate("k") is True
    assert cache.invalidate("k") is False


def test_cleanup_expired(clock):
    cache = CrawlCache(ttl=10, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2, ttl=100)
    clock.now += 20
    assert cache.cleanup_expired() == 1
    assert cache.stats().entries_in_memory == 1


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        CrawlCache(max_entries=0)

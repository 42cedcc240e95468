"""In-memory crawl cache: TTL + LRU bounded map of fetched pages.

Advisory only: a miss costs one extra fetch.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from trawler.crawl.urls import base_domain, normalize_url


@dataclass
class CacheStats:
    entries_in_memory: int
    max_entries: int
    hits: int
    misses: int

    def to_dict(self) -> dict[str, int]:
        return {
            "entries_in_memory": self.entries_in_memory,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }


@dataclass
class _Entry:
    value: Any
    expires_at: float


class CrawlCache:
    """Bounded cache keyed by normalized URL plus crawl options.

    Entries expire *ttl* seconds after they are written. When the cache is
    full, the least recently used entry is evicted.

    Args:
        ttl: Default lifetime of an entry in seconds.
        max_entries: Hard bound on entries kept in memory.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(url: str, options: dict[str, Any] | None = None) -> str:
        """Cache key for *url* fetched with *options* (sorted, JSON-encoded)."""
        key = normalize_url(url)
        if options:
            key += "|" + json.dumps(options, sort_keys=True)
        return key

    def get(self, key: str) -> Any | None:
        """Return the cached value for *key*, or None on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key* for *ttl* seconds (default: ``self.ttl``)."""
        lifetime = self.ttl if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + lifetime)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it was present."""
        return self._entries.pop(key, None) is not None

    def invalidate_domain(self, domain: str) -> int:
        """Drop every entry whose URL is on *domain* (``www.`` ignored)."""
        doomed = [k for k in self._entries if base_domain(k.split("|", 1)[0]) == domain]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def cleanup_expired(self) -> int:
        """Purge expired entries. Returns the number removed."""
        now = self._clock()
        doomed = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            entries_in_memory=len(self._entries),
            max_entries=self.max_entries,
            hits=self._hits,
            misses=self._misses,
        )

    def __len__(self) -> int:
        return len(self._entries)

"""Breadth-first site crawler under a page budget.

For each URL popped from the frontier:
  1. Crawl cache lookup (normalized URL + extraction options).
  2. SSRF check of the host (once per host per crawl).
  3. Per-host rate limit.
  4. Plain HTTP fetch; if it fails or yields little text, render the page
     in a leased browser context instead.
  5. Extract title/text/links/images; queue same-domain links.

Page-level failures are recorded in ``CrawlResult.errors`` and the crawl
continues. Only seed validation errors propagate.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import urllib.parse
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from trawler.config import CrawlerCfg
from trawler.crawl.cache import CrawlCache
from trawler.crawl.fetch import CrawlPage, extract_page, fetch_http, render_page
from trawler.crawl.pool import BrowserPool
from trawler.crawl.urls import (
    base_domain,
    check_public_host,
    is_crawlable_link,
    normalize_url,
    path_allowed,
)
from trawler.db.models import CrawlPolicy
from trawler.errors import FetchError, LeaseTimeoutError, UrlValidationError

logger = logging.getLogger(__name__)

__all__ = ["CrawlPage", "CrawlProgress", "CrawlResult", "PageError", "SiteCrawler"]


@dataclass
class PageError:
    url: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "error": self.error}


@dataclass
class CrawlProgress:
    """Snapshot emitted after every page (and at start/end of a crawl)."""

    current: int
    total: int
    current_url: str
    phase: str  # discovering | processing | completed | failed
    discovered_links: int
    queue_length: int

    def to_event(self) -> dict[str, Any]:
        return {
            "status": "progress",
            "phase": self.phase,
            "current": self.current,
            "total": self.total,
            "currentUrl": self.current_url,
            "discoveredLinks": self.discovered_links,
            "queueLength": self.queue_length,
        }


@dataclass
class CrawlResult:
    seed_url: str
    pages: list[CrawlPage] = field(default_factory=list)
    errors: list[PageError] = field(default_factory=list)
    discovered_links: int = 0

    @property
    def success(self) -> bool:
        """True if at least one page produced text."""
        return bool(self.pages)


ProgressCallback = Callable[[CrawlProgress], Awaitable[None]]
HttpFetch = Callable[[str, float], str]
HostCheck = Callable[[str], None]
Renderer = Callable[[Any, str, float], Awaitable[str]]


class SiteCrawler:
    """Crawl one site per ``crawl()`` call, sharing the pool and cache.

    Args:
        pool: Browser pool for render fallbacks; None disables rendering.
        cache: Crawl cache; None disables caching.
        config: Crawl limits (page ceiling, delays, content caps).
        http_fetch: Blocking ``(url, timeout) -> html`` fetcher; defaults to
            ``fetch_http`` with *host_check* vetting every redirect.
        host_check: Blocking SSRF guard raising ``UrlValidationError``.
        renderer: ``(context, url, timeout) -> html`` browser renderer.
    """

    def __init__(
        self,
        pool: BrowserPool | None,
        cache: CrawlCache | None,
        config: CrawlerCfg | None = None,
        *,
        http_fetch: HttpFetch | None = None,
        host_check: HostCheck = check_public_host,
        renderer: Renderer = render_page,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pool = pool
        self._cache = cache
        self.config = config or CrawlerCfg()
        self._http_fetch = http_fetch or functools.partial(fetch_http, host_check=host_check)
        self._host_check = host_check
        self._renderer = renderer
        self._clock = clock
        self._last_fetch: dict[str, float] = {}

    async def crawl(
        self,
        url: str,
        policy: CrawlPolicy | None = None,
        progress: ProgressCallback | None = None,
    ) -> CrawlResult:
        """Crawl from *url* under *policy*, reporting through *progress*.

        Raises:
            UrlValidationError: The seed URL is malformed or not public.
            PolicyError: ``policy.max_pages`` < 1.
        """
        policy = (policy or CrawlPolicy()).clamped(self.config.max_pages_ceiling)
        seed = normalize_url(url)
        verified_hosts: set[str] = set()
        await self._verify_host(seed, verified_hosts)

        domain = base_domain(seed)
        frontier: deque[str] = deque([seed])
        seen: set[str] = {seed}
        result = CrawlResult(seed_url=seed)
        visited = 0
        budget = policy.max_pages if policy.crawl_subpages else 1

        await _emit(progress, CrawlProgress(0, budget, seed, "discovering", 1, 1))

        while frontier and visited < budget:
            current = frontier.popleft()
            visited += 1
            try:
                page = await self._load(current, policy, verified_hosts)
            except (FetchError, LeaseTimeoutError, UrlValidationError) as exc:
                logger.info("Page failed: %s (%s)", current, exc)
                result.errors.append(PageError(current, str(exc)))
                page = None

            if page is not None:
                if page.content.strip():
                    result.pages.append(page)
                else:
                    result.errors.append(PageError(current, "No text content"))
                if policy.crawl_subpages:
                    for link in page.links:
                        if (
                            link not in seen
                            and is_crawlable_link(link, domain)
                            and path_allowed(link, policy.include_paths, policy.exclude_paths)
                        ):
                            seen.add(link)
                            frontier.append(link)

            await _emit(
                progress,
                CrawlProgress(
                    current=visited,
                    total=min(budget, visited + len(frontier)),
                    current_url=current,
                    phase="processing",
                    discovered_links=len(seen),
                    queue_length=len(frontier),
                ),
            )

        result.discovered_links = len(seen)
        await _emit(
            progress,
            CrawlProgress(
                current=visited,
                total=visited,
                current_url=seed,
                phase="completed" if result.success else "failed",
                discovered_links=len(seen),
                queue_length=len(frontier),
            ),
        )
        logger.info(
            "Crawl of %s finished: %d page(s), %d error(s), %d link(s) discovered",
            seed, len(result.pages), len(result.errors), len(seen),
        )
        return result

    # ------------------------------------------------------------------
    # Per-page pipeline
    # ------------------------------------------------------------------

    async def _load(self, url: str, policy: CrawlPolicy, verified_hosts: set[str]) -> CrawlPage:
        key = CrawlCache.make_key(url, {"full_page_content": policy.full_page_content})
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        await self._verify_host(url, verified_hosts)
        await self._throttle(url)

        page: CrawlPage | None = None
        http_error: FetchError | None = None
        try:
            html = await asyncio.to_thread(self._http_fetch, url, self.config.request_timeout)
            page = self._extract(url, html, policy)
        except FetchError as exc:
            http_error = exc

        if page is None or len(page.content) <= self.config.browser_fallback_chars:
            page = await self._render_fallback(url, policy, page, http_error)

        if self._cache is not None:
            self._cache.put(key, page)
        return page

    async def _render_fallback(
        self,
        url: str,
        policy: CrawlPolicy,
        http_page: CrawlPage | None,
        http_error: FetchError | None,
    ) -> CrawlPage:
        """Render *url* in the browser; keep the HTTP page if that is better."""
        if self._pool is None:
            if http_page is None:
                raise http_error or FetchError(f"Could not fetch '{url}'")
            return http_page
        try:
            async with self._pool.lease() as lease:
                html = await self._renderer(lease.context, url, self.config.request_timeout)
        except (FetchError, LeaseTimeoutError) as exc:
            if http_page is None:
                raise
            logger.debug("Render fallback failed for %s, keeping HTTP content: %s", url, exc)
            return http_page
        rendered = self._extract(url, html, policy)
        if http_page is not None and len(http_page.content) >= len(rendered.content):
            return http_page
        return rendered

    def _extract(self, url: str, html: str, policy: CrawlPolicy) -> CrawlPage:
        return extract_page(
            url,
            html,
            full_page_content=policy.full_page_content,
            max_chars=self.config.max_content_chars,
        )

    async def _verify_host(self, url: str, verified_hosts: set[str]) -> None:
        host = urllib.parse.urlsplit(url).hostname or ""
        if host in verified_hosts:
            return
        await asyncio.to_thread(self._host_check, url)
        verified_hosts.add(host)

    async def _throttle(self, url: str) -> None:
        """Keep ``domain_delay`` seconds between fetches of the same host."""
        host = urllib.parse.urlsplit(url).hostname or ""
        delay = self.config.domain_delay
        last = self._last_fetch.get(host)
        if last is not None and delay > 0:
            wait = delay - (self._clock() - last)
            if wait > 0:
                await asyncio.sleep(wait)
        self._last_fetch[host] = self._clock()


async def _emit(progress: ProgressCallback | None, snapshot: CrawlProgress) -> None:
    if progress is not None:
        await progress(snapshot)

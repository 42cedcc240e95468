"""Website crawling: browser pool, crawl cache, fetch/extract, orchestration."""

from trawler.crawl.cache import CrawlCache
from trawler.crawl.crawler import CrawlPage, CrawlResult, SiteCrawler
from trawler.crawl.orchestrator import CrawlOrchestrator
from trawler.crawl.pool import BrowserPool, Lease

__all__ = [
    "BrowserPool",
    "CrawlCache",
    "CrawlOrchestrator",
    "CrawlPage",
    "CrawlResult",
    "Lease",
    "SiteCrawler",
]

"""Crawl orchestration for website sources, including safe re-crawl.

A crawl claims the source (``processing``), runs the site crawler while
persisting and publishing progress, then swaps the source's chunks for the
new ones. Old chunks are deleted only once the crawl has produced at least
one page and the replacement chunks are built.

Re-crawl adds a snapshot of the metadata and chunk count taken before the
claim. If the crawl fails or yields nothing, the snapshot is written back
and the source returns to its previous status with ``last_recrawl_error``
set. If the old chunks were deleted but the new ones could not be stored,
the source goes to the ``critical`` status and ``CriticalStateError`` is
raised; it stays there until an operator acknowledges it.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from trawler.crawl.cache import CrawlCache
from trawler.crawl.crawler import CrawlProgress, CrawlResult, SiteCrawler
from trawler.crawl.urls import base_domain, normalize_url
from trawler.db.models import Chunk, CrawlPolicy, Source, SourceStatus, SourceType, WebsiteMetadata
from trawler.db.repository import Repository
from trawler.errors import (
    CriticalStateError,
    PolicyError,
    SourceBusyError,
    SourceNotFoundError,
    SourceStateError,
)
from trawler.events import EventPublisher, LogPublisher, crawl_topic, safe_publish
from trawler.ingest.website import WebsiteChunker

logger = logging.getLogger(__name__)

CRITICAL_MESSAGE = (
    "Re-crawl failed after deleting existing content. Manual intervention required."
)
MAX_RECORDED_ERRORS = 50


@dataclass
class CrawlOutcome:
    """Terminal state of one crawl or re-crawl run."""

    source_id: str
    status: str
    pages_crawled: int = 0
    chunks: int = 0
    error: str | None = None
    page_errors: list[dict[str, str]] = field(default_factory=list)

    def to_event(self) -> dict[str, Any]:
        event: dict[str, Any] = {
            "status": self.status,
            "sourceId": self.source_id,
            "pagesCrawled": self.pages_crawled,
            "chunks": self.chunks,
        }
        if self.error:
            event["error"] = self.error
        return event


class _ReplaceFailed(Exception):
    def __init__(self, cause: Exception, deleted: int) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.deleted = deleted


class CrawlOrchestrator:
    """Run crawls against website sources.

    Args:
        repo: Open repository.
        crawler: Site crawler sharing the process-wide pool and cache.
        chunker: Website chunker for crawled pages.
        publisher: Progress sink; defaults to the log.
        cache: Crawl cache to invalidate before a re-crawl.
    """

    def __init__(
        self,
        repo: Repository,
        crawler: SiteCrawler,
        chunker: WebsiteChunker | None = None,
        publisher: EventPublisher | None = None,
        cache: CrawlCache | None = None,
    ) -> None:
        self._repo = repo
        self._crawler = crawler
        self._chunker = chunker or WebsiteChunker()
        self._publisher = publisher or LogPublisher()
        self._cache = cache

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------

    async def crawl_source(
        self,
        source_id: str,
        url: str | None = None,
        policy: CrawlPolicy | None = None,
    ) -> CrawlOutcome:
        """Crawl a website source and replace its chunks with the result.

        *url* and *policy* override (and are saved over) the stored ones.

        Raises:
            SourceNotFoundError, SourceStateError: Unknown, non-website,
                removed or critical source.
            SourceBusyError: The source is already being crawled.
            UrlValidationError, PolicyError: Invalid URL or policy.
            CriticalStateError: Old chunks were deleted and the new ones
                could not be stored.
        """
        source = self._load_website(source_id)
        meta = _website_meta(source)
        if url is not None:
            meta.url = normalize_url(url)
        if policy is not None:
            meta.policy = policy.validate()
        if not meta.url:
            raise SourceStateError(f"Source {source_id} has no URL to crawl")

        meta.error = None
        meta.progress = None
        self._claim(source_id, meta)
        previous = self._repo.count_chunks_by_source(source_id)
        logger.info("Crawling source %s from %s", source_id, meta.url)

        try:
            result = await self._crawler.crawl(meta.url, meta.policy, self._reporter(source_id, meta))
        except Exception as exc:
            await self._fail(source_id, meta, str(exc))
            raise

        _apply_result(meta, result)
        if not result.success:
            return await self._fail(source_id, meta, _empty_crawl_message(result), result)

        try:
            chunks = self._chunker.chunk_pages(source_id, result.pages, agent_id=source.agent_id)
        except PolicyError as exc:
            return await self._fail(source_id, meta, str(exc), result)

        try:
            self._replace_chunks(source_id, chunks)
        except _ReplaceFailed as exc:
            if exc.deleted and previous:
                await self._mark_critical(source_id, meta, exc.cause)
            return await self._fail(source_id, meta, f"Could not store chunks: {exc}", result)

        return await self._succeed(source_id, meta, result, chunks)

    # ------------------------------------------------------------------
    # Safe re-crawl
    # ------------------------------------------------------------------

    async def recrawl_source(self, source_id: str) -> CrawlOutcome:
        """Re-crawl a website source without risking its existing chunks.

        Raises:
            SourceNotFoundError, SourceStateError: Unknown, non-website or
                removed source.
            SourceBusyError: The source is already being crawled.
            CriticalStateError: The source is flagged critical, or this run
                deleted the old chunks and failed to store the new ones.
        """
        source = self._load_website(source_id)
        snapshot = _website_meta(source)
        previous_status = source.status
        previous = self._repo.count_chunks_by_source(source_id)

        meta = _website_meta(source)
        meta.recrawl_started_at = _now()
        meta.previous_chunks_count = previous
        meta.progress = None
        self._claim(source_id, meta)
        logger.info(
            "Re-crawling source %s from %s (%d existing chunk(s))", source_id, meta.url, previous
        )

        if self._cache is not None and meta.url:
            dropped = self._cache.invalidate_domain(base_domain(meta.url))
            logger.debug("Invalidated %d cache entr(ies) for %s", dropped, meta.url)

        try:
            result = await self._crawler.crawl(meta.url, meta.policy, self._reporter(source_id, meta))
        except Exception as exc:
            await self._restore(source_id, snapshot, previous_status, previous, str(exc))
            raise

        if not result.success:
            return await self._restore(
                source_id, snapshot, previous_status, previous, _empty_crawl_message(result)
            )

        try:
            chunks = self._chunker.chunk_pages(source_id, result.pages, agent_id=source.agent_id)
        except PolicyError as exc:
            return await self._restore(source_id, snapshot, previous_status, previous, str(exc))

        try:
            self._replace_chunks(source_id, chunks)
        except _ReplaceFailed as exc:
            if exc.deleted:
                _apply_result(meta, result)
                await self._mark_critical(source_id, meta, exc.cause)
            return await self._restore(
                source_id, snapshot, previous_status, previous, f"Could not store chunks: {exc}"
            )

        _apply_result(meta, result)
        meta.last_recrawl_error = None
        return await self._succeed(source_id, meta, result, chunks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_website(self, source_id: str) -> Source:
        source = self._repo.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        if source.type != SourceType.WEBSITE.value:
            raise SourceStateError(f"Source {source_id} is a {source.type} source, not a website")
        if source.status == SourceStatus.CRITICAL.value:
            raise CriticalStateError(
                f"Source {source_id} needs manual intervention; acknowledge it before crawling"
            )
        if source.status == SourceStatus.REMOVED.value:
            raise SourceStateError(f"Source {source_id} is removed; restore it first")
        if source.status == SourceStatus.PROCESSING.value:
            raise SourceBusyError(f"Source {source_id} is already being crawled")
        return source

    def _claim(self, source_id: str, meta: WebsiteMetadata) -> None:
        if not self._repo.claim_for_processing(source_id, meta.to_json()):
            raise SourceBusyError(f"Source {source_id} is already being crawled")

    def _reporter(self, source_id: str, meta: WebsiteMetadata):
        topic = crawl_topic(source_id)

        async def report(progress: CrawlProgress) -> None:
            event = progress.to_event()
            event["sourceId"] = source_id
            meta.progress = event
            self._repo.update_source(source_id, metadata=meta.to_json())
            await safe_publish(self._publisher, topic, event)

        return report

    def _replace_chunks(self, source_id: str, chunks: list[Chunk]) -> None:
        deleted = 0
        try:
            deleted = self._repo.delete_chunks_by_source(source_id)
            self._repo.add_chunks(chunks)
        except sqlite3.Error as exc:
            raise _ReplaceFailed(exc, deleted) from exc

    async def _succeed(
        self,
        source_id: str,
        meta: WebsiteMetadata,
        result: CrawlResult,
        chunks: list[Chunk],
    ) -> CrawlOutcome:
        meta.error = None
        meta.critical_error = False
        meta.is_trained = False
        meta.progress = None
        size = sum(len(p.content.encode("utf-8")) for p in result.pages)
        self._repo.update_source(
            source_id, status=SourceStatus.READY.value, metadata=meta.to_json(), size=size
        )
        outcome = CrawlOutcome(
            source_id=source_id,
            status=SourceStatus.READY.value,
            pages_crawled=len(result.pages),
            chunks=len(chunks),
            page_errors=[e.to_dict() for e in result.errors],
        )
        logger.info(
            "Source %s ready: %d page(s), %d chunk(s)", source_id, outcome.pages_crawled, outcome.chunks
        )
        await safe_publish(self._publisher, crawl_topic(source_id), outcome.to_event())
        return outcome

    async def _fail(
        self,
        source_id: str,
        meta: WebsiteMetadata,
        message: str,
        result: CrawlResult | None = None,
    ) -> CrawlOutcome:
        meta.error = message
        meta.progress = None
        self._repo.update_source(source_id, status=SourceStatus.ERROR.value, metadata=meta.to_json())
        outcome = CrawlOutcome(
            source_id=source_id,
            status=SourceStatus.ERROR.value,
            chunks=self._repo.count_chunks_by_source(source_id),
            error=message,
            page_errors=[e.to_dict() for e in result.errors] if result else [],
        )
        logger.warning("Crawl of source %s failed: %s", source_id, message)
        await safe_publish(self._publisher, crawl_topic(source_id), outcome.to_event())
        return outcome

    async def _restore(
        self,
        source_id: str,
        snapshot: WebsiteMetadata,
        previous_status: str,
        previous_chunks: int,
        message: str,
    ) -> CrawlOutcome:
        """Write the pre-recrawl metadata back; existing chunks are untouched.

        A source that still has chunks is searchable again, so it returns to
        ``ready`` whatever its status before the re-crawl.
        """
        status = previous_status
        if previous_chunks:
            status = SourceStatus.READY.value
            snapshot.error = None
        snapshot.last_recrawl_error = message
        self._repo.update_source(source_id, status=status, metadata=snapshot.to_json())
        outcome = CrawlOutcome(
            source_id=source_id,
            status=status,
            pages_crawled=snapshot.pages_crawled,
            chunks=previous_chunks,
            error=message,
        )
        logger.warning(
            "Re-crawl of source %s failed, kept %d existing chunk(s): %s",
            source_id, previous_chunks, message,
        )
        await safe_publish(self._publisher, crawl_topic(source_id), outcome.to_event())
        return outcome

    async def _mark_critical(
        self, source_id: str, meta: WebsiteMetadata, cause: Exception
    ) -> None:
        meta.error = CRITICAL_MESSAGE
        meta.critical_error = True
        meta.last_recrawl_error = str(cause)
        meta.progress = None
        self._repo.update_source(
            source_id, status=SourceStatus.CRITICAL.value, metadata=meta.to_json(), size=0
        )
        logger.error("Source %s lost its chunks: %s (%s)", source_id, CRITICAL_MESSAGE, cause)
        outcome = CrawlOutcome(
            source_id=source_id,
            status=SourceStatus.CRITICAL.value,
            pages_crawled=meta.pages_crawled,
            error=CRITICAL_MESSAGE,
        )
        await safe_publish(self._publisher, crawl_topic(source_id), outcome.to_event())
        raise CriticalStateError(f"Source {source_id}: {CRITICAL_MESSAGE}") from cause


def _website_meta(source: Source) -> WebsiteMetadata:
    meta = source.details
    if not isinstance(meta, WebsiteMetadata):
        raise SourceStateError(f"Source {source.id} has no website metadata")
    return meta


def _apply_result(meta: WebsiteMetadata, result: CrawlResult) -> None:
    meta.pages_crawled = len(result.pages)
    meta.crawled_urls = [p.url for p in result.pages]
    meta.discovered_links = result.discovered_links
    meta.crawl_errors = [e.to_dict() for e in result.errors[:MAX_RECORDED_ERRORS]]
    meta.last_crawled_at = _now()


def _empty_crawl_message(result: CrawlResult) -> str:
    if result.errors:
        return f"No pages could be crawled: {result.errors[0].error}"
    return "No pages with text content were found"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")

"""KnowledgeBase: the explicitly constructed facade over the whole pipeline.

One instance owns the database connection, the browser pool, the crawl
cache, the event publisher, the job queue and the embedding writer. Nothing
is module-level state, so tests can run several isolated instances.

    async with KnowledgeBase(".trawler.db", config) as kb:
        source = await kb.add_website("agent-1", "https://example.com")
        await kb.trigger_crawl(source.id)
        await kb.train("agent-1")
        hits = await kb.search("agent-1", "pricing")
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from trawler.config import TrawlerConfig
from trawler.crawl.cache import CrawlCache
from trawler.crawl.crawler import SiteCrawler
from trawler.crawl.orchestrator import CrawlOrchestrator
from trawler.crawl.pool import BrowserPool
from trawler.crawl.urls import validate_crawl_url
from trawler.db.connection import Database
from trawler.db.models import (
    Chunk,
    CrawlPolicy,
    FileMetadata,
    QaMetadata,
    Source,
    SourceMetadata,
    SourceStatus,
    SourceType,
    TextMetadata,
    WebsiteMetadata,
)
from trawler.db.repository import Repository
from trawler.db.schema import initialize
from trawler.errors import (
    CriticalStateError,
    PolicyError,
    SourceBusyError,
    SourceNotFoundError,
    SourceStateError,
)
from trawler.events import EventPublisher, FanoutPublisher, LogPublisher, RedisPublisher
from trawler.ingest.base import BaseChunker
from trawler.ingest.embedding_writer import EmbeddingConfig, EmbeddingSummary, EmbeddingWriter
from trawler.ingest.files import chunker_for, read_document
from trawler.ingest.plaintext import PlainTextChunker
from trawler.ingest.qa import QaChunker, normalize_questions
from trawler.ingest.website import WebsiteChunker
from trawler.metrics import collect_metrics
from trawler.queue.arq_queue import ArqJobQueue
from trawler.queue.base import (
    CRAWL_SOURCE,
    EMBED_AGENT,
    RECRAWL_SOURCE,
    Handlers,
    Job,
    JobQueue,
    crawl_job_id,
)
from trawler.queue.factory import create_job_queue
from trawler.queue.inline import InlineJobQueue
from trawler.rag.retriever import SearchConfig, results_payload, search

logger = logging.getLogger(__name__)


@dataclass
class TrainSummary:
    sources_updated: int = 0
    sources_purged: int = 0
    total_sources: int = 0
    total_size_kb: float = 0.0
    embeddings: EmbeddingSummary = field(default_factory=EmbeddingSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourcesUpdated": self.sources_updated,
            "sourcesPurged": self.sources_purged,
            "totalSources": self.total_sources,
            "totalSizeKb": self.total_size_kb,
            "embeddings": {
                "generated": self.embeddings.total_processed,
                "failed": self.embeddings.total_failed,
                "tokens": self.embeddings.total_tokens,
                "cost": self.embeddings.total_cost,
                "model": self.embeddings.model,
            },
        }


class KnowledgeBase:
    """Sources, crawls, training and search for every agent in one database.

    Args:
        db_path: SQLite file; created and migrated if missing.
        config: Loaded configuration; defaults when None.
        pool: Browser pool; built from ``config.pool`` when None.
        crawler: Site crawler; built over *pool* and the cache when None.
        publisher: Extra event sink added next to the log sink.
        queue: Job queue; chosen by ``create_job_queue`` in ``start()`` when None.
        use_broker: False forces inline jobs (the arq worker itself uses this).
    """

    def __init__(
        self,
        db_path: Path | str,
        config: TrawlerConfig | None = None,
        *,
        pool: BrowserPool | None = None,
        crawler: SiteCrawler | None = None,
        publisher: EventPublisher | None = None,
        queue: JobQueue | None = None,
        use_broker: bool = True,
    ) -> None:
        self.config = config or TrawlerConfig()
        self._conn = Database(db_path).connect()
        initialize(self._conn)
        self.repo = Repository(self._conn)

        self.cache = CrawlCache(self.config.cache.ttl, self.config.cache.max_entries)
        self.pool = pool or BrowserPool.from_config(self.config.pool)
        self.crawler = crawler or SiteCrawler(self.pool, self.cache, self.config.crawler)
        self.publisher = FanoutPublisher(LogPublisher(logging.DEBUG))
        if publisher is not None:
            self.publisher.add(publisher)

        chunkers = self.config.chunkers
        self.orchestrator = CrawlOrchestrator(
            self.repo,
            self.crawler,
            WebsiteChunker(chunkers.website.chunk_size, chunkers.website.overlap),
            self.publisher,
            self.cache,
        )
        self.embedder = EmbeddingWriter(self.repo, EmbeddingConfig.from_cfg(self.config.embedding))
        self._text_chunker = PlainTextChunker(chunkers.text.chunk_size, chunkers.text.overlap)
        self._qa_chunker = QaChunker()

        self.queue = queue
        self._use_broker = use_broker
        self._started_at = time.monotonic()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> KnowledgeBase:
        """Select the job queue. Idempotent."""
        if self.queue is None:
            if self._use_broker:
                self.queue = await create_job_queue(self.config.queue, self.handlers)
            else:
                self.queue = InlineJobQueue(
                    self.handlers,
                    max_tries=self.config.queue.max_tries,
                    retry_backoff=self.config.queue.retry_backoff,
                )
            if isinstance(self.queue, ArqJobQueue):
                self.publisher.add(RedisPublisher(self.queue.redis))
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.queue is not None:
            await self.queue.close()
        await self.pool.shutdown()
        self._conn.close()

    async def __aenter__(self) -> KnowledgeBase:
        return await self.start()

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def handlers(self) -> Handlers:
        return {
            CRAWL_SOURCE: self.run_crawl_job,
            RECRAWL_SOURCE: self.run_recrawl_job,
            EMBED_AGENT: self.run_embed_job,
        }

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def add_website(
        self,
        agent_id: str,
        url: str,
        policy: CrawlPolicy | None = None,
        name: str | None = None,
    ) -> Source:
        """Register a website; it stays ``pending`` until crawled.

        Raises:
            UrlValidationError: Bad URL or non-public host.
            PolicyError: ``policy.max_pages`` < 1.
        """
        normalized = await asyncio.to_thread(validate_crawl_url, url)
        policy = (policy or CrawlPolicy(max_pages=self.config.crawler.default_max_pages)).validate()
        meta = WebsiteMetadata(url=normalized, policy=policy)
        return self._insert(agent_id, SourceType.WEBSITE, name or normalized, meta, [], 0)

    def add_text(self, agent_id: str, title: str, content: str) -> Source:
        """Register free text and chunk it immediately."""
        if not content.strip():
            raise PolicyError("Text content is empty.")
        source_id = _new_id()
        chunks = self._text_chunker.chunk(
            source_id, content, {"type": "text", "title": title}, agent_id=agent_id
        )
        return self._insert(
            agent_id,
            SourceType.TEXT,
            title or "Untitled text",
            TextMetadata(title=title),
            chunks,
            len(content.encode("utf-8")),
            source_id=source_id,
        )

    def add_qa(
        self, agent_id: str, questions: Sequence[str], answer: str, title: str = ""
    ) -> Source:
        """Register one Q&A pair as exactly one chunk."""
        source_id = _new_id()
        chunks = self._qa_chunker.chunk(
            source_id, answer, {"questions": list(questions), "title": title}, agent_id=agent_id
        )
        cleaned = normalize_questions(questions)
        meta = QaMetadata(title=title, questions=cleaned, answer=answer.strip())
        return self._insert(
            agent_id,
            SourceType.QA,
            title or cleaned[0],
            meta,
            chunks,
            len(chunks[0].content.encode("utf-8")),
            source_id=source_id,
        )

    def add_file(self, agent_id: str, path: Path | str) -> Source:
        """Register a document file and chunk its text.

        Raises:
            PolicyError: Unsupported type, too large, or no extractable text.
            FileNotFoundError: *path* does not exist.
        """
        path = Path(path)
        text = read_document(path)
        if not text.strip():
            raise PolicyError(f"No extractable text in '{path.name}'.")
        source_id = _new_id()
        chunker: BaseChunker = chunker_for(path, self.config.chunkers)
        chunks = chunker.chunk(
            source_id, text, {"type": "file", "filename": path.name}, agent_id=agent_id
        )
        size = path.stat().st_size
        meta = FileMetadata(filename=path.name, extension=path.suffix.lower(), file_size=size)
        return self._insert(
            agent_id, SourceType.FILE, path.name, meta, chunks, size, source_id=source_id
        )

    def get_source(self, source_id: str) -> Source:
        source = self.repo.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        return source

    def list_sources(self, agent_id: str | None = None, status: str | None = None) -> list[Source]:
        return self.repo.list_sources(agent_id, status=status)

    def remove_source(self, source_id: str) -> Source:
        """Soft-delete; the next ``train`` purges the source and its chunks."""
        source = self.get_source(source_id)
        if source.status == SourceStatus.PROCESSING.value:
            raise SourceBusyError(f"Source {source_id} is being crawled; try again when it finishes")
        if source.status != SourceStatus.REMOVED.value:
            self.repo.update_source(source_id, status=SourceStatus.REMOVED.value)
        return self.get_source(source_id)

    def restore_source(self, source_id: str) -> Source:
        """Undo ``remove_source`` before the next ``train``."""
        source = self.get_source(source_id)
        if source.status != SourceStatus.REMOVED.value:
            raise SourceStateError(f"Source {source_id} is {source.status}, not removed")
        status = (
            SourceStatus.READY if self.repo.count_chunks_by_source(source_id) else SourceStatus.PENDING
        )
        self.repo.update_source(source_id, status=status.value)
        return self.get_source(source_id)

    # ------------------------------------------------------------------
    # Crawl triggers
    # ------------------------------------------------------------------

    async def trigger_crawl(
        self,
        source_id: str,
        url: str | None = None,
        policy: CrawlPolicy | None = None,
    ) -> dict[str, Any]:
        """Validate, then queue a crawl. Returns ``{success, message, sourceId}``.

        Raises:
            SourceNotFoundError, SourceStateError, SourceBusyError,
            CriticalStateError, UrlValidationError, PolicyError.
        """
        source = self._crawlable(source_id)
        meta = source.details
        if not isinstance(meta, WebsiteMetadata):
            raise SourceStateError(f"Source {source_id} has no website metadata")
        target = await asyncio.to_thread(validate_crawl_url, url or meta.url)
        if policy is not None:
            policy.validate()
        job = Job(
            CRAWL_SOURCE,
            {
                "source_id": source_id,
                "url": target,
                "policy": policy.to_dict() if policy is not None else None,
            },
            job_id=crawl_job_id(source_id),
        )
        return await self._submit(job, source_id, "Crawl")

    async def trigger_recrawl(self, source_id: str) -> dict[str, Any]:
        """Queue a safe re-crawl; the existing chunks stay until replacements exist."""
        self._crawlable(source_id)
        job = Job(RECRAWL_SOURCE, {"source_id": source_id}, job_id=crawl_job_id(source_id))
        return await self._submit(job, source_id, "Re-crawl")

    async def run_crawl_job(
        self, source_id: str, url: str | None = None, policy: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        parsed = CrawlPolicy.from_dict(policy) if policy is not None else None
        outcome = await self.orchestrator.crawl_source(source_id, url, parsed)
        return outcome.to_event()

    async def run_recrawl_job(self, source_id: str) -> dict[str, Any]:
        outcome = await self.orchestrator.recrawl_source(source_id)
        return outcome.to_event()

    async def run_embed_job(self, agent_id: str) -> dict[str, Any]:
        summary = await self.embedder.embed_pending(agent_id)
        return summary.to_dict()

    # ------------------------------------------------------------------
    # Training and search
    # ------------------------------------------------------------------

    async def train(self, agent_id: str, generate_embeddings: bool = True) -> TrainSummary:
        """Purge removed sources, activate pending ones, embed pending chunks.

        Sources are flagged ``is_trained`` only when every pending chunk
        was embedded.
        """
        summary = TrainSummary(embeddings=EmbeddingSummary(model=self.embedder.config.model))
        summary.sources_purged = len(self.repo.purge_removed(agent_id))

        updated: set[str] = set()
        for source in self.repo.list_sources(agent_id, status=SourceStatus.PENDING.value):
            if source.type != SourceType.WEBSITE.value:
                self.repo.update_source(source.id, status=SourceStatus.READY.value)
                updated.add(source.id)

        if generate_embeddings:
            summary.embeddings = await self.embedder.embed_pending(agent_id)
            if summary.embeddings.success:
                for source in self.repo.list_sources(agent_id, status=SourceStatus.READY.value):
                    meta = source.details
                    if not meta.is_trained:
                        meta.is_trained = True
                        self.repo.update_source(source.id, metadata=meta.to_json())
                        updated.add(source.id)

        sources = self.repo.list_sources(agent_id)
        summary.sources_updated = len(updated)
        summary.total_sources = len(sources)
        summary.total_size_kb = round(sum(s.size for s in sources) / 1024, 1)
        logger.info(
            "Trained agent %s: %d source(s) updated, %d purged, %d chunk(s) embedded, %d failed",
            agent_id, summary.sources_updated, summary.sources_purged,
            summary.embeddings.total_processed, summary.embeddings.total_failed,
        )
        return summary

    async def search(
        self,
        agent_id: str,
        query: str,
        limit: int | None = None,
        similarity_threshold: float | None = None,
        source_types: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Return ``{results, totalResults}`` for *query* within *agent_id*."""
        config = SearchConfig.from_cfg(
            self.config.retrieval,
            limit=limit,
            similarity_threshold=similarity_threshold,
            source_types=list(source_types) if source_types else None,
        )
        results = await search(agent_id, query, self.repo, self.embedder, config)
        return results_payload(results)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def metrics(self) -> dict[str, Any]:
        await self.start()
        return await collect_metrics(
            self.repo,
            self.pool,
            self.cache,
            self.queue,
            stuck_after=self.config.crawler.stuck_after,
            started_at=self._started_at,
        )

    def reap_stuck_sources(self, max_age: float | None = None) -> list[str]:
        """Fail ``processing`` sources with no update for *max_age* seconds."""
        age = self.config.crawler.stuck_after if max_age is None else max_age
        reaped: list[str] = []
        for source in self.repo.list_stale_processing(age):
            meta = source.details
            meta.error = f"Processing did not finish within {int(age)}s; marked as failed."
            meta.progress = None
            self.repo.update_source(
                source.id, status=SourceStatus.ERROR.value, metadata=meta.to_json()
            )
            reaped.append(source.id)
            logger.warning("Reaped stuck source %s", source.id)
        return reaped

    def acknowledge_critical(self, source_id: str) -> Source:
        """Clear the critical flag so the source can be crawled again."""
        source = self.get_source(source_id)
        if source.status != SourceStatus.CRITICAL.value:
            raise SourceStateError(f"Source {source_id} is {source.status}, not critical")
        meta = source.details
        meta.critical_error = False
        meta.extra["acknowledged_error"] = meta.error
        meta.error = "Content was lost in a failed re-crawl; crawl again to restore it."
        self.repo.update_source(source_id, status=SourceStatus.ERROR.value, metadata=meta.to_json())
        logger.info("Critical state of source %s acknowledged", source_id)
        return self.get_source(source_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(
        self,
        agent_id: str,
        source_type: SourceType,
        name: str,
        meta: SourceMetadata,
        chunks: list[Chunk],
        size: int,
        *,
        source_id: str | None = None,
    ) -> Source:
        source = Source(
            id=source_id or _new_id(),
            agent_id=agent_id,
            type=source_type.value,
            name=name,
            status=SourceStatus.PENDING.value,
            metadata=meta.to_json(),
            size=size,
        )
        self.repo.add_source(source)
        try:
            self.repo.add_chunks(chunks)
        except sqlite3.Error:
            self.repo.delete_source(source.id)
            raise
        logger.info(
            "Added %s source %s for agent %s (%d chunk(s))",
            source_type.value, source.id, agent_id, len(chunks),
        )
        return self.get_source(source.id)

    def _crawlable(self, source_id: str) -> Source:
        source = self.get_source(source_id)
        if source.type != SourceType.WEBSITE.value:
            raise SourceStateError(f"Source {source_id} is a {source.type} source, not a website")
        if source.status == SourceStatus.PROCESSING.value:
            raise SourceBusyError(f"Source {source_id} is already being crawled")
        if source.status == SourceStatus.CRITICAL.value:
            raise CriticalStateError(
                f"Source {source_id} needs manual intervention; acknowledge it first"
            )
        if source.status == SourceStatus.REMOVED.value:
            raise SourceStateError(f"Source {source_id} is removed; restore it first")
        return source

    async def _submit(self, job: Job, source_id: str, what: str) -> dict[str, Any]:
        await self.start()
        job_id = await self.queue.enqueue(job)
        if self.queue.mode != InlineJobQueue.mode:
            return {"success": True, "message": f"{what} queued", "sourceId": source_id, "jobId": job_id}
        source = self.get_source(source_id)
        meta = source.details
        error = meta.error
        if isinstance(meta, WebsiteMetadata) and meta.last_recrawl_error and job.name == RECRAWL_SOURCE:
            error = meta.last_recrawl_error
        ok = source.status == SourceStatus.READY.value and not (
            job.name == RECRAWL_SOURCE and error
        )
        message = f"{what} finished with status {source.status}"
        if error and not ok:
            message += f": {error}"
        return {"success": ok, "message": message, "sourceId": source_id, "jobId": job_id}


def _new_id() -> str:
    return str(uuid.uuid4())

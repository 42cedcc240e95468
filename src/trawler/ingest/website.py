"""Website chunker: page text split into windows, each carrying its URL and title."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from trawler.db.models import Chunk
from trawler.ingest.base import BaseChunker

if TYPE_CHECKING:
    from trawler.crawl.fetch import CrawlPage


def page_header(url: str, title: str) -> str:
    return f"URL: {url}\nTitle: {title}\n\n"


class WebsiteChunker(BaseChunker):
    """Chunk crawled pages so provenance survives chunk-level retrieval.

    Every chunk of a page starts with ``URL: ...`` / ``Title: ...`` lines.
    ``chunk_size`` bounds the page text in each chunk, not the header.
    """

    def chunk(
        self,
        source_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        agent_id: str = "",
    ) -> list[Chunk]:
        """Chunk one page; *metadata* must carry ``url`` and may carry ``title``."""
        self.check_size(content)
        if not content.strip():
            return []
        meta = dict(metadata or {})
        url = meta.get("url", "")
        title = meta.get("title", "")
        spans = self._split_spans(content)
        return self._make_chunks(
            source_id,
            content,
            spans,
            agent_id=agent_id,
            metadata=meta,
            prefix=page_header(url, title),
        )

    def chunk_pages(
        self, source_id: str, pages: Iterable[CrawlPage], *, agent_id: str = ""
    ) -> list[Chunk]:
        """Chunk every page in crawl order with positions contiguous across pages."""
        out: list[Chunk] = []
        for page_index, page in enumerate(pages):
            chunks = self.chunk(
                source_id,
                page.content,
                {"type": "website", "url": page.url, "title": page.title, "page_index": page_index},
                agent_id=agent_id,
            )
            for chunk in chunks:
                out.append(dataclasses.replace(chunk, position=len(out)))
        return out


def chunk_urls(chunks: Iterable[Chunk]) -> set[str]:
    """Distinct page URLs referenced by website *chunks*."""
    return {json.loads(c.metadata).get("url", "") for c in chunks}

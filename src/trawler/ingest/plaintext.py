"""Plain text chunker: boundary-preferring window with overlap."""

from __future__ import annotations

from typing import Any

from trawler.db.models import Chunk
from trawler.ingest.base import BaseChunker


class PlainTextChunker(BaseChunker):
    """Split plain text into windows of at most ``chunk_size`` characters.

    Delegates entirely to ``BaseChunker._split_spans()``.
    """

    def chunk(
        self,
        source_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        agent_id: str = "",
    ) -> list[Chunk]:
        self.check_size(content)
        if not content.strip():
            return []
        spans = self._split_spans(content)
        return self._make_chunks(
            source_id, content, spans, agent_id=agent_id, metadata=metadata
        )

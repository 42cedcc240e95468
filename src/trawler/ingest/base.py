"""Base chunker interface for all trawler source types."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from trawler.db.models import Chunk
from trawler.errors import PolicyError

MAX_CONTENT_BYTES = 10 * 1024 * 1024  # 10 MB per document
MAX_CHUNKS = 1000  # per chunk() call

# Preferred split points, strongest first.
_BREAKS = ("\n\n", "\n", ". ", "! ", "? ", "; ", " ")


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Sizes are in characters. Subclasses implement ``chunk()`` and build on
    ``_split_spans()`` (boundary-preferring window with overlap) and
    ``_make_chunks()``.

    Output is deterministic: the same content and metadata always give the
    same boundaries and positions.
    """

    def __init__(self, chunk_size: int = 8000, overlap: float = 0.05) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def chunk(
        self,
        source_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        agent_id: str = "",
    ) -> list[Chunk]:
        """Split *content* into Chunk objects for *source_id*.

        Args:
            source_id: ID of the parent Source row.
            content: Full decoded text of the source document.
            metadata: Provenance copied into every chunk's metadata.
            agent_id: Owning agent, stamped on every chunk.

        Returns:
            Chunks with contiguous ``position`` values starting at 0.

        Raises:
            PolicyError: Content exceeds 10 MB or would produce more than
                ``MAX_CHUNKS`` chunks.
        """

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    @staticmethod
    def check_size(content: str) -> None:
        size = len(content.encode("utf-8"))
        if size > MAX_CONTENT_BYTES:
            raise PolicyError(
                f"Content is {size / (1024 * 1024):.1f} MB; the limit is "
                f"{MAX_CONTENT_BYTES // (1024 * 1024)} MB."
            )

    def _split_spans(
        self, text: str, start: int = 0, end: int | None = None
    ) -> list[tuple[int, int]]:
        """Return ``(start, end)`` offsets of windows over ``text[start:end]``.

        Each window is at most ``chunk_size`` characters. A window that would
        cut the text is shortened to the last paragraph, line, sentence or
        word break in its second half. Consecutive windows overlap by
        ``overlap`` of the chunk size. Offsets are trimmed of surrounding
        whitespace; empty windows are omitted.
        """
        end = len(text) if end is None else end
        overlap_chars = int(self.chunk_size * self.overlap)
        spans: list[tuple[int, int]] = []
        pos = start

        while pos < end:
            stop = min(pos + self.chunk_size, end)
            if stop < end:
                stop = _find_break(text, pos, stop)
            span = _trim(text, pos, stop)
            if span is not None:
                spans.append(span)
            if stop >= end:
                break
            nxt = max(stop - overlap_chars, pos + 1)
            if nxt < stop:
                # Start the overlap on a word boundary.
                space = text.find(" ", nxt, stop)
                if space != -1:
                    nxt = space + 1
            pos = nxt

        if len(spans) > MAX_CHUNKS:
            raise PolicyError(
                f"Content would produce {len(spans)} chunks; the limit is {MAX_CHUNKS}."
            )
        return spans

    def _make_chunks(
        self,
        source_id: str,
        text: str,
        spans: list[tuple[int, int]],
        *,
        agent_id: str = "",
        metadata: dict[str, Any] | None = None,
        prefix: str = "",
    ) -> list[Chunk]:
        """Turn *spans* of *text* into sequentially positioned Chunks."""
        base = dict(metadata or {})
        total = len(spans)
        return [
            Chunk(
                source_id=source_id,
                agent_id=agent_id,
                position=i,
                content=prefix + text[s:e],
                metadata=json.dumps(
                    {
                        **base,
                        "chunk_index": i,
                        "total_chunks": total,
                        "start_char": s,
                        "end_char": e,
                    }
                ),
            )
            for i, (s, e) in enumerate(spans)
        ]


def _find_break(text: str, start: int, stop: int) -> int:
    floor = start + (stop - start) // 2
    for sep in _BREAKS:
        idx = text.rfind(sep, floor, stop)
        if idx != -1:
            return idx + len(sep)
    return stop


def _trim(text: str, start: int, stop: int) -> tuple[int, int] | None:
    while start < stop and text[start].isspace():
        start += 1
    while stop > start and text[stop - 1].isspace():
        stop -= 1
    return (start, stop) if start < stop else None

"""Markdown chunker: heading-aware splits with window fallback."""

from __future__ import annotations

import re
from typing import Any

from trawler.db.models import Chunk
from trawler.errors import PolicyError
from trawler.ingest.base import MAX_CHUNKS, BaseChunker

# Matches H1, H2, H3 headings at the start of a line.
_HEADING_RE = re.compile(r"^#{1,3} .+", re.MULTILINE)


class MarkdownChunker(BaseChunker):
    """Split Markdown on H1/H2/H3 heading boundaries.

    Strategy:
    - Each heading plus its following content is a *section*.
    - Content before the first heading (preamble) becomes its own section.
    - Sections longer than ``chunk_size`` are split with ``_split_spans()``.
    - A document without H1/H2/H3 headings is split like plain text.
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

        sections = self._section_spans(content)
        if not sections:
            spans = self._split_spans(content)
        else:
            spans = []
            for start, end in sections:
                if end - start <= self.chunk_size:
                    spans.append((start, end))
                else:
                    spans.extend(self._split_spans(content, start, end))
            if len(spans) > MAX_CHUNKS:
                raise PolicyError(
                    f"Content would produce {len(spans)} chunks; the limit is {MAX_CHUNKS}."
                )

        return self._make_chunks(
            source_id, content, spans, agent_id=agent_id, metadata=metadata
        )

    @staticmethod
    def _section_spans(content: str) -> list[tuple[int, int]]:
        """Offsets of the preamble and each heading section, whitespace-trimmed.

        Returns an empty list if no headings are found (signals fallback).
        """
        matches = list(_HEADING_RE.finditer(content))
        if not matches:
            return []

        bounds = [0] + [m.start() for m in matches] + [len(content)]
        spans: list[tuple[int, int]] = []
        for start, end in zip(bounds, bounds[1:]):
            while start < end and content[start].isspace():
                start += 1
            while end > start and content[end - 1].isspace():
                end -= 1
            if start < end:
                spans.append((start, end))
        return spans

"""Q&A chunker: exactly one chunk per question/answer pair."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from trawler.db.models import Chunk
from trawler.errors import PolicyError
from trawler.ingest.base import BaseChunker


def format_qa(questions: Sequence[str], answer: str) -> str:
    return f"Questions: {', '.join(questions)}\n\nAnswer: {answer}"


class QaChunker(BaseChunker):
    """One pair, one chunk, regardless of answer length.

    ``content`` is the answer; ``metadata["questions"]`` lists the
    questions it answers. Blank questions are dropped and duplicates
    collapsed, so a pair entered twice still yields a single chunk.
    """

    def chunk(
        self,
        source_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        agent_id: str = "",
    ) -> list[Chunk]:
        meta = dict(metadata or {})
        questions = normalize_questions(meta.get("questions") or [])
        answer = content.strip()
        if not questions:
            raise PolicyError("A Q&A pair needs at least one question.")
        if not answer:
            raise PolicyError("A Q&A pair needs an answer.")
        text = format_qa(questions, answer)
        self.check_size(text)
        meta.update(type="qa", questions=questions, title=meta.get("title", ""))
        return [
            Chunk(
                source_id=source_id,
                agent_id=agent_id,
                position=0,
                content=text,
                metadata=json.dumps(meta),
            )
        ]


def normalize_questions(questions: Sequence[str]) -> list[str]:
    seen: dict[str, None] = {}
    for q in questions:
        q = q.strip()
        if q:
            seen.setdefault(q, None)
    return list(seen)

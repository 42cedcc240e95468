"""Tests for QaChunker."""

from __future__ import annotations

import json

import pytest

from trawler.errors import PolicyError
from trawler.ingest.qa import QaChunker, format_qa, normalize_questions


def test_single_chunk_for_pair():
    chunks = QaChunker().chunk(
        "qa-1", "Use the reset link.", {"questions": ["How do I reset?"], "title": "Reset"},
        agent_id="a1",
    )
    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.position == 0
    assert chunk.agent_id == "a1"
    assert chunk.content == "Questions: How do I reset?\n\nAnswer: Use the reset link."
    meta = json.loads(chunk.metadata)
    assert meta["type"] == "qa"
    assert meta["title"] == "Reset"


def test_long_answer_still_one_chunk():
    answer = "Detailed answer sentence. " * 2000
    chunks = QaChunker(chunk_size=100).chunk("qa-1", answer, {"questions": ["Why?"]})
    assert len(chunks) == 1


def test_questions_deduplicated():
    chunks = QaChunker().chunk(
        "qa-1", "Yes.", {"questions": ["Open late?", " Open late? ", "", "Open Sundays?"]}
    )
    assert json.loads(chunks[0].metadata)["questions"] == ["Open late?", "Open Sundays?"]
    assert chunks[0].content.startswith("Questions: Open late?, Open Sundays?")


def test_requires_question():
    with pytest.raises(PolicyError, match="question"):
        QaChunker().chunk("qa-1", "Answer.", {"questions": ["  "]})


def test_requires_answer():
    with pytest.raises(PolicyError, match="answer"):
        QaChunker().chunk("qa-1", "   ", {"questions": ["Q?"]})


def test_helpers():
    assert normalize_questions(["a", "b", "a"]) == ["a", "b"]
    assert format_qa(["a", "b"], "c") == "Questions: a, b\n\nAnswer: c"

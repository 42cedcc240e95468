"""Tests for BaseChunker windowing via PlainTextChunker."""

from __future__ import annotations

import json

import pytest

from trawler.errors import PolicyError
from trawler.ingest.base import MAX_CONTENT_BYTES, BaseChunker
from trawler.ingest.plaintext import PlainTextChunker

_PROSE = " ".join(
    f"Sentence number {i} describes one small part of the product." for i in range(60)
)


def test_default_settings():
    chunker = PlainTextChunker()
    assert chunker.chunk_size == 8000
    assert chunker.overlap == pytest.approx(0.05)


@pytest.mark.parametrize("kwargs", [{"chunk_size": 0}, {"overlap": -0.1}, {"overlap": 1.0}])
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        PlainTextChunker(**kwargs)


def test_count_tokens():
    assert BaseChunker.count_tokens("") == 1
    assert BaseChunker.count_tokens("a" * 400) == 100


def test_empty_content():
    assert PlainTextChunker().chunk("src-1", "") == []
    assert PlainTextChunker().chunk("src-1", "  \n  ") == []


def test_short_text_single_chunk():
    chunks = PlainTextChunker().chunk("src-1", "  Short text.\n", {"title": "T"}, agent_id="a1")
    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.content == "Short text."
    assert chunk.source_id == "src-1"
    assert chunk.agent_id == "a1"
    meta = json.loads(chunk.metadata)
    assert meta["title"] == "T"
    assert (meta["chunk_index"], meta["total_chunks"]) == (0, 1)


def test_windows_bounded_and_contiguous():
    chunks = PlainTextChunker(chunk_size=200, overlap=0.1).chunk("src-1", _PROSE)
    assert len(chunks) > 1
    assert [c.position for c in chunks] == list(range(len(chunks)))
    assert all(len(c.content) <= 200 for c in chunks)
    assert {json.loads(c.metadata)["total_chunks"] for c in chunks} == {len(chunks)}


def test_windows_prefer_sentence_breaks():
    chunks = PlainTextChunker(chunk_size=200, overlap=0.0).chunk("src-1", _PROSE)
    assert all(c.content.endswith(".") for c in chunks)


def test_windows_overlap():
    chunks = PlainTextChunker(chunk_size=200, overlap=0.2).chunk("src-1", _PROSE)
    metas = [json.loads(c.metadata) for c in chunks]
    for prev, nxt in zip(metas, metas[1:]):
        assert nxt["start_char"] < prev["end_char"]


def test_windows_cover_whole_text():
    chunks = PlainTextChunker(chunk_size=150, overlap=0.0).chunk("src-1", _PROSE)
    metas = [json.loads(c.metadata) for c in chunks]
    assert metas[0]["start_char"] == 0
    assert metas[-1]["end_char"] == len(_PROSE)
    for prev, nxt in zip(metas, metas[1:]):
        assert nxt["start_char"] <= prev["end_char"] + 1


def test_unbroken_text_is_cut_at_window():
    chunks = PlainTextChunker(chunk_size=50, overlap=0.0).chunk("src-1", "x" * 120)
    assert [len(c.content) for c in chunks] == [50, 50, 20]


def test_deterministic():
    chunker = PlainTextChunker(chunk_size=180, overlap=0.1)
    first = chunker.chunk("src-1", _PROSE, {"k": 1})
    second = chunker.chunk("src-1", _PROSE, {"k": 1})
    assert [(c.position, c.content, c.metadata) for c in first] == [
        (c.position, c.content, c.metadata) for c in second
    ]


def test_content_over_size_limit():
    with pytest.raises(PolicyError, match="10 MB"):
        PlainTextChunker().chunk("src-1", "a" * (MAX_CONTENT_BYTES + 1))


def test_too_many_chunks():
    with pytest.raises(PolicyError, match="chunks"):
        PlainTextChunker(chunk_size=1, overlap=0.0).chunk("src-1", "a" * 1001)

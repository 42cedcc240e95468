"""Tests for MarkdownChunker."""

from __future__ import annotations

import json

from trawler.ingest.markdown import MarkdownChunker

_DOC = """Intro paragraph before any heading.

# Install

Run the installer.

## Configure

Edit trawler.yaml.

#### Deep heading

Still part of Configure.
"""


def test_splits_on_headings_with_preamble():
    chunks = MarkdownChunker().chunk("src-1", _DOC)
    assert [c.content.splitlines()[0] for c in chunks] == [
        "Intro paragraph before any heading.",
        "# Install",
        "## Configure",
    ]
    assert "#### Deep heading" in chunks[2].content
    assert [c.position for c in chunks] == [0, 1, 2]


def test_sections_are_trimmed():
    chunks = MarkdownChunker().chunk("src-1", _DOC)
    assert all(c.content == c.content.strip() for c in chunks)


def test_long_section_is_windowed():
    body = " ".join(f"Step {i} of the setup guide." for i in range(40))
    doc = f"# Short\n\nTiny.\n\n# Long\n\n{body}\n"
    chunks = MarkdownChunker(chunk_size=200, overlap=0.0).chunk("src-1", doc)

    assert chunks[0].content == "# Short\n\nTiny."
    assert len(chunks) > 2
    assert all(len(c.content) <= 200 for c in chunks)
    assert [c.position for c in chunks] == list(range(len(chunks)))


def test_no_headings_falls_back_to_windows():
    text = "plain words " * 50
    chunks = MarkdownChunker(chunk_size=100, overlap=0.0).chunk("src-1", text)
    assert len(chunks) > 1
    assert all(len(c.content) <= 100 for c in chunks)


def test_metadata_offsets_point_into_source():
    chunks = MarkdownChunker().chunk("src-1", _DOC, {"filename": "guide.md"})
    for chunk in chunks:
        meta = json.loads(chunk.metadata)
        assert meta["filename"] == "guide.md"
        assert _DOC[meta["start_char"]:meta["end_char"]] == chunk.content


def test_empty():
    assert MarkdownChunker().chunk("src-1", "\n\n") == []

"""File sources: extension → text extraction and chunker.

Supported extensions:
- ``.pdf``: page text via pypdf; pages without text (scanned images) are skipped.
- ``.md`` / ``.markdown``: heading-aware ``MarkdownChunker``.
- ``.html`` / ``.htm``: body text extracted like a crawled page.
- ``.txt .text .rst .csv .log``: ``PlainTextChunker``.
"""

from __future__ import annotations

from pathlib import Path

import pypdf

from trawler.config import ChunkersCfg
from trawler.crawl.fetch import extract_page
from trawler.errors import PolicyError
from trawler.ingest.base import MAX_CONTENT_BYTES, BaseChunker
from trawler.ingest.markdown import MarkdownChunker
from trawler.ingest.plaintext import PlainTextChunker

PDF_EXTENSIONS = frozenset({".pdf"})
MARKDOWN_EXTENSIONS = frozenset({".md", ".markdown"})
HTML_EXTENSIONS = frozenset({".html", ".htm"})
TEXT_EXTENSIONS = frozenset({".txt", ".text", ".rst", ".csv", ".log"})
SUPPORTED_EXTENSIONS = PDF_EXTENSIONS | MARKDOWN_EXTENSIONS | HTML_EXTENSIONS | TEXT_EXTENSIONS


def read_document(path: Path) -> str:
    """Return the text of the document at *path*.

    Raises:
        PolicyError: Unsupported extension or file larger than 10 MB.
        FileNotFoundError: *path* does not exist.
    """
    ext = path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise PolicyError(
            f"Unsupported file type '{ext or path.name}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    size = path.stat().st_size
    if size > MAX_CONTENT_BYTES:
        raise PolicyError(
            f"File '{path.name}' is {size / (1024 * 1024):.1f} MB; the limit is "
            f"{MAX_CONTENT_BYTES // (1024 * 1024)} MB."
        )
    if ext in PDF_EXTENSIONS:
        return _extract_pdf_text(path)
    text = path.read_text(encoding="utf-8", errors="replace")
    if ext in HTML_EXTENSIONS:
        return extract_page(path.as_uri(), text, full_page_content=True, max_chars=len(text)).content
    return text


def chunker_for(path: Path, cfg: ChunkersCfg | None = None) -> BaseChunker:
    """Pick the chunker for *path*'s extension, sized from *cfg*."""
    cfg = cfg or ChunkersCfg()
    ext = path.suffix.lower()
    if ext in MARKDOWN_EXTENSIONS:
        return MarkdownChunker(cfg.markdown.chunk_size, cfg.markdown.overlap)
    if ext in PDF_EXTENSIONS:
        return PlainTextChunker(cfg.pdf.chunk_size, cfg.pdf.overlap)
    return PlainTextChunker(cfg.text.chunk_size, cfg.text.overlap)


def _extract_pdf_text(path: Path) -> str:
    """Extract all page text from the PDF at *path*."""
    try:
        reader = pypdf.PdfReader(str(path))
    except pypdf.errors.PdfReadError as exc:
        raise PolicyError(f"Cannot read PDF '{path.name}': {exc}") from exc
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)

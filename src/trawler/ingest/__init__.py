"""Trawler ingest pipeline: chunkers, file extraction, embedding writer."""

from trawler.ingest.base import BaseChunker
from trawler.ingest.embedding_writer import EmbeddingConfig, EmbeddingSummary, EmbeddingWriter
from trawler.ingest.markdown import MarkdownChunker
from trawler.ingest.plaintext import PlainTextChunker
from trawler.ingest.qa import QaChunker
from trawler.ingest.website import WebsiteChunker

__all__ = [
    "BaseChunker",
    "EmbeddingConfig",
    "EmbeddingSummary",
    "EmbeddingWriter",
    "MarkdownChunker",
    "PlainTextChunker",
    "QaChunker",
    "WebsiteChunker",
]

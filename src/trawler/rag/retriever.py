"""Vector search over embedded chunks, scoped to one agent and one model.

The query is embedded with the same model as the chunks, and only chunks
stored with that model are compared. Mixing embedding spaces would make
similarity scores meaningless.

Similarity = 1 - cosine distance (sqlite-vec ``vec_distance_cosine``).
Chunks below ``similarity_threshold`` are dropped before ``limit`` is applied.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from trawler.config import RetrievalCfg
from trawler.db.models import Chunk, SourceType
from trawler.db.repository import Repository
from trawler.errors import PolicyError
from trawler.ingest.embedding_writer import EmbeddingWriter

logger = logging.getLogger(__name__)

_MAX_LIMIT = 100


@dataclass
class SearchConfig:
    """Search parameters.

    Attributes:
        limit: Maximum number of chunks returned.
        similarity_threshold: Minimum similarity (0.0 to 1.0) a chunk must reach.
        source_types: Restrict to these source types; None searches all.
    """

    limit: int = 5
    similarity_threshold: float = 0.7
    source_types: list[str] | None = None

    @classmethod
    def from_cfg(cls, cfg: RetrievalCfg, **overrides: Any) -> SearchConfig:
        values = {"limit": cfg.limit, "similarity_threshold": cfg.similarity_threshold}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> SearchConfig:
        if not 1 <= self.limit <= _MAX_LIMIT:
            raise PolicyError(f"limit must be between 1 and {_MAX_LIMIT}, got {self.limit}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise PolicyError(
                f"similarity_threshold must be between 0 and 1, got {self.similarity_threshold}"
            )
        for t in self.source_types or []:
            try:
                SourceType(t)
            except ValueError as exc:
                raise PolicyError(f"Unknown source type '{t}'") from exc
        return self


@dataclass
class ScoredChunk:
    """A retrieved chunk with its similarity score.

    Attributes:
        chunk: The Chunk instance from the database.
        similarity: Cosine similarity to the query (higher = more relevant).
        source_type: Type of the chunk's source.
    """

    chunk: Chunk
    similarity: float
    source_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.chunk.id,
            "sourceId": self.chunk.source_id,
            "sourceType": self.source_type,
            "position": self.chunk.position,
            "content": self.chunk.content,
            "similarity": round(self.similarity, 4),
            "metadata": json.loads(self.chunk.metadata),
        }


async def search(
    agent_id: str,
    query: str,
    repo: Repository,
    embedder: EmbeddingWriter,
    config: SearchConfig | None = None,
) -> list[ScoredChunk]:
    """Return the chunks of *agent_id* most similar to *query*, best first.

    An empty query or a failed query embedding returns no results.

    Raises:
        PolicyError: ``limit``, threshold or source types out of range.
    """
    config = (config or SearchConfig()).validate()
    if not query.strip():
        return []

    vector = await embedder.embed_query(query)
    if vector is None:
        logger.warning("Search for agent %s returned nothing: query embedding failed", agent_id)
        return []

    rows = repo.search_similar(
        agent_id,
        vector,
        embedder.config.model,
        limit=config.limit,
        threshold=config.similarity_threshold,
        source_types=config.source_types,
    )
    logger.debug(
        "Search for agent %s: %d result(s) at threshold %.2f",
        agent_id, len(rows), config.similarity_threshold,
    )
    return [ScoredChunk(chunk=c, similarity=s, source_type=t) for c, s, t in rows]


def results_payload(results: Sequence[ScoredChunk]) -> dict[str, Any]:
    """``{results, totalResults}`` response shape."""
    return {"results": [r.to_dict() for r in results], "totalResults": len(results)}

"""Embedding writer: batched LiteLLM embeddings with retry and cost accounting.

``embed_pending`` walks every chunk of an agent that has no embedding, in
``(source_id, position)`` order, and embeds them in fixed-size batches:

- A short delay separates consecutive batches (provider rate limits).
- Each batch is retried with exponential backoff; a batch that exhausts its
  retries counts as failed and the next batch still runs.
- Vectors are stored with the model that produced them; token/cost usage
  is added to each source's running totals.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import litellm

from trawler.config import EmbeddingCfg
from trawler.db.models import Chunk
from trawler.db.repository import Repository
from trawler.errors import MissingApiKeyError
from trawler.ingest.base import BaseChunker

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 20
    max_retries: int = 3
    retry_delay: float = 1.0
    batch_delay: float = 0.5

    @classmethod
    def from_cfg(cls, cfg: EmbeddingCfg) -> EmbeddingConfig:
        return cls(
            model=cfg.model,
            dimensions=cfg.dimensions,
            batch_size=cfg.batch_size,
            max_retries=cfg.max_retries,
            retry_delay=cfg.retry_delay,
            batch_delay=cfg.batch_delay,
        )


@dataclass
class EmbeddingSummary:
    """Outcome of one ``embed_pending`` run.

    ``success`` is True only when no chunk failed; callers use it to decide
    whether sources may be marked trained.
    """

    success: bool = True
    total_processed: int = 0
    total_failed: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    model: str = ""
    batches: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalProcessed": self.total_processed,
            "totalFailed": self.total_failed,
            "totalCost": self.total_cost,
            "totalTokens": self.total_tokens,
            "model": self.model,
        }


class EmbeddingBatchError(RuntimeError):
    """A batch failed every attempt."""


ProgressCallback = Callable[[int, int, int], Awaitable[None]]


class EmbeddingWriter:
    """Embed pending chunks through ``litellm.aembedding()``.

    Args:
        repo:   Open Repository instance.
        config: Embedding configuration (model, batching, retries).
    """

    def __init__(self, repo: Repository, config: EmbeddingConfig | None = None) -> None:
        self._repo = repo
        self.config = config or EmbeddingConfig()

    async def embed_pending(
        self, agent_id: str, on_progress: ProgressCallback | None = None
    ) -> EmbeddingSummary:
        """Embed every chunk of *agent_id* that has no embedding yet.

        Args:
            agent_id: Agent whose chunks are embedded.
            on_progress: Awaited after each batch with
                ``(processed, failed, total)``.

        Raises:
            MissingApiKeyError: No API key for the configured provider.
        """
        cfg = self.config
        summary = EmbeddingSummary(model=cfg.model)
        pending = self._repo.pending_chunks(agent_id)
        if not pending:
            return summary
        self._check_api_key()

        total = len(pending)
        logger.info(
            "Embedding %d chunk(s) for agent %s with %s (batch size %d)",
            total, agent_id, cfg.model, cfg.batch_size,
        )
        for start in range(0, total, cfg.batch_size):
            if start and cfg.batch_delay > 0:
                await asyncio.sleep(cfg.batch_delay)
            batch = pending[start : start + cfg.batch_size]
            summary.batches += 1
            try:
                vectors, response = await self._embed_batch([c.content for c in batch])
            except EmbeddingBatchError as exc:
                summary.total_failed += len(batch)
                summary.errors.append(str(exc))
                logger.warning(
                    "Embedding batch %d (%d chunk(s)) failed: %s",
                    summary.batches, len(batch), exc,
                )
            else:
                self._repo.set_embeddings(
                    [(c.id, v) for c, v in zip(batch, vectors)], cfg.model
                )
                tokens, cost = _usage(response, batch)
                self._record_usage(batch, tokens, cost)
                summary.total_processed += len(batch)
                summary.total_tokens += tokens
                summary.total_cost += cost
            if on_progress is not None:
                await on_progress(summary.total_processed, summary.total_failed, total)

        summary.success = summary.total_failed == 0
        logger.info(
            "Embedded %d chunk(s), %d failed, %d token(s), $%.6f",
            summary.total_processed, summary.total_failed,
            summary.total_tokens, summary.total_cost,
        )
        return summary

    async def embed_query(self, text: str) -> list[float] | None:
        """Embed a search query with the chunk model. None if the provider fails."""
        self._check_api_key()
        try:
            vectors, _ = await self._embed_batch([text])
        except EmbeddingBatchError as exc:
            logger.warning("Query embedding failed: %s", exc)
            return None
        return vectors[0]

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _embed_batch(self, texts: list[str]) -> tuple[list[list[float]], Any]:
        """Call the provider with retry and exponential backoff."""
        cfg = self.config
        last: Exception | None = None
        for attempt in range(1, cfg.max_retries + 1):
            try:
                response = await litellm.aembedding(model=cfg.model, input=texts)
                vectors = [item["embedding"] for item in response.data]
                if len(vectors) != len(texts):
                    raise ValueError(
                        f"provider returned {len(vectors)} vector(s) for {len(texts)} input(s)"
                    )
                return vectors, response
            except Exception as exc:
                # Provider SDKs raise many unrelated types; all count as a failed attempt.
                last = exc
                logger.debug("Embedding attempt %d/%d failed: %s", attempt, cfg.max_retries, exc)
                if attempt < cfg.max_retries and cfg.retry_delay > 0:
                    await asyncio.sleep(cfg.retry_delay * 2 ** (attempt - 1))
        raise EmbeddingBatchError(
            f"{cfg.max_retries} attempt(s) failed, last error: {last}"
        ) from last

    def _record_usage(self, batch: Sequence[Chunk], tokens: int, cost: float) -> None:
        """Split batch usage across sources by their share of the batch text."""
        chars: dict[str, int] = defaultdict(int)
        for chunk in batch:
            chars[chunk.source_id] += len(chunk.content)
        total_chars = sum(chars.values()) or 1
        for source_id, n in chars.items():
            share = n / total_chars
            self._repo.add_embedding_usage(
                source_id, round(tokens * share), cost * share, self.config.model
            )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_api_key(self) -> None:
        """Raise MissingApiKeyError if the embedding provider has no API key set."""
        provider = self.config.model.split("/")[0].lower() if "/" in self.config.model else ""
        env_map = {
            "openai": "OPENAI_API_KEY",
            "cohere": "COHERE_API_KEY",
            "gemini": "GEMINI_API_KEY",
            "voyage": "VOYAGE_API_KEY",
            "mistral": "MISTRAL_API_KEY",
        }
        required_env = env_map.get(provider)
        if required_env and not os.environ.get(required_env):
            raise MissingApiKeyError(provider, required_env)


def _usage(response: Any, batch: Sequence[Chunk]) -> tuple[int, float]:
    """Token count and USD cost of one embedding response."""
    usage = getattr(response, "usage", None)
    tokens = getattr(usage, "prompt_tokens", None) or getattr(usage, "total_tokens", None)
    if not tokens:
        tokens = sum(BaseChunker.count_tokens(c.content) for c in batch)
    try:
        cost = float(litellm.completion_cost(completion_response=response) or 0.0)
    except Exception as exc:
        # Unpriced or self-hosted models have no cost table entry.
        logger.debug("No cost available for embedding response: %s", exc)
        cost = 0.0
    return int(tokens), cost

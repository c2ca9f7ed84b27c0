"""Retrieval orchestration built on top of the knowledge store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from wikirag.embeddings.store import KnowledgeStore
from wikirag.models import ScoredChunk


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    max_top_k: int | None = 20
    min_score: float = 0.0


class Retriever(Protocol):
    """Retrieve relevant chunks for a query vector."""

    def retrieve(self, vector: Sequence[float], *, top_k: int | None = None) -> Sequence[ScoredChunk]:
        """Return the top-k retrieved chunks, most similar first."""


class VectorRetriever:
    """Retriever backed by a knowledge store similarity search."""

    def __init__(self, store: KnowledgeStore, config: RetrievalConfig | None = None) -> None:
        self._store = store
        self._config = config or RetrievalConfig()

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def effective_top_k(self, top_k: int | None = None) -> int:
        limit = top_k or self._config.top_k
        if self._config.max_top_k:
            limit = min(limit, self._config.max_top_k)
        return max(1, limit)

    def retrieve(self, vector: Sequence[float], *, top_k: int | None = None) -> Sequence[ScoredChunk]:
        items = self._store.search(vector, top_k=self.effective_top_k(top_k))
        if self._config.min_score > 0.0:
            items = [item for item in items if item.score >= self._config.min_score]
        return list(items)


__all__ = ["RetrievalConfig", "Retriever", "VectorRetriever"]

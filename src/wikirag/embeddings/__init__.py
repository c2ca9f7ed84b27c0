"""Embedding providers and the knowledge store."""

from .service import (
    EmbeddingConfig,
    EmbeddingProvider,
    GeminiEmbeddingProvider,
    HashEmbeddingProvider,
    LangChainEmbeddingProvider,
    Vector,
    build_embedding_provider,
)
from .store import ChromaKnowledgeStore, KnowledgeStore, build_knowledge_store

__all__ = [
    "ChromaKnowledgeStore",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "GeminiEmbeddingProvider",
    "HashEmbeddingProvider",
    "KnowledgeStore",
    "LangChainEmbeddingProvider",
    "Vector",
    "build_embedding_provider",
    "build_knowledge_store",
]

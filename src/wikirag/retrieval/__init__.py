"""Retrieval components."""

from .service import RetrievalConfig, Retriever, VectorRetriever

__all__ = ["RetrievalConfig", "Retriever", "VectorRetriever"]

"""Error types raised by the wikirag pipelines and their collaborators."""

from __future__ import annotations


class WikiRagError(RuntimeError):
    """Base class for every error raised by wikirag."""


class ExtractionError(WikiRagError):
    """Raised when document content cannot be decoded into text."""

    def __init__(self, message: str, content_type: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.content_type = content_type
        self.cause = cause


class UnreadableContentError(ExtractionError):
    """Content is present but inaccessible, e.g. an encrypted PDF."""


class EmbeddingError(WikiRagError):
    """Raised when the embedding backend fails or times out."""


class GenerationError(WikiRagError):
    """Raised when the generation backend fails or times out."""


class StorageError(WikiRagError):
    """Raised when a write to the knowledge store cannot be completed."""


class InvalidChunkParametersError(WikiRagError, ValueError):
    """Raised for non-positive chunk size/overlap or overlap >= size."""

    def __init__(self, chunk_size: int, overlap: int) -> None:
        super().__init__(
            f"Invalid chunk parameters: chunk_size={chunk_size}, overlap={overlap} "
            "(both must be positive and overlap < chunk_size)"
        )
        self.chunk_size = chunk_size
        self.overlap = overlap


class SupersededRunError(WikiRagError):
    """Raised when an ingestion run no longer owns its document."""

    def __init__(self, document_id: str, run_id: str) -> None:
        super().__init__(f"Ingestion run {run_id} was superseded for document {document_id}")
        self.document_id = document_id
        self.run_id = run_id


class NotFoundError(WikiRagError, LookupError):
    """Raised when a referenced document or conversation does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


__all__ = [
    "EmbeddingError",
    "ExtractionError",
    "GenerationError",
    "InvalidChunkParametersError",
    "NotFoundError",
    "StorageError",
    "SupersededRunError",
    "UnreadableContentError",
    "WikiRagError",
]

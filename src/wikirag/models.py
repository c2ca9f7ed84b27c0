"""Shared domain models used across the wikirag pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document."""

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


@dataclass(frozen=True)
class Document:
    """Uploaded document and its processing state."""

    id: str
    filename: str
    content_type: str
    size_bytes: int
    status: DocumentStatus
    created_at: datetime
    updated_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """Embedded segment of a document's text."""

    id: str
    document_id: str
    content: str
    chunk_index: int
    created_at: datetime
    embedding: tuple[float, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NewChunk:
    """Chunk content paired with its embedding, ready to be persisted."""

    content: str
    chunk_index: int
    embedding: tuple[float, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk returned from similarity search together with its provenance."""

    chunk: Chunk
    document: Document
    score: float


@dataclass(frozen=True)
class SourceReference:
    """Pointer from an assistant answer back to the chunk it used."""

    document_id: str
    chunk_id: str
    filename: str
    chunk_index: int
    similarity_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "chunk_id": self.chunk_id,
            "filename": self.filename,
            "chunk_index": self.chunk_index,
            "similarity_score": self.similarity_score,
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "SourceReference":
        return cls(
            document_id=str(value.get("document_id", "")),
            chunk_id=str(value.get("chunk_id", "")),
            filename=str(value.get("filename", "")),
            chunk_index=int(value.get("chunk_index", 0)),
            similarity_score=float(value.get("similarity_score", 0.0)),
        )


@dataclass(frozen=True)
class Conversation:
    id: str
    session_id: str
    created_at: datetime
    updated_at: datetime
    title: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime
    sources: Sequence[SourceReference] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatAnswer:
    """Structured answer produced for one chat turn."""

    text: str
    sources: Sequence[SourceReference]
    session_id: str
    conversation_id: str
    message_id: str
    latency_ms: float
    retrieval_ms: float | None = None
    generation_ms: float | None = None

"""Pydantic models for the wikirag API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from wikirag.models import Chunk, ChatAnswer, Document, DocumentStatus, Message, MessageRole, SourceReference


class DocumentResponse(BaseModel):
    id: str = Field(..., description="Stable identifier for the uploaded document")
    filename: str
    content_type: str
    size_bytes: int = Field(..., ge=0)
    status: DocumentStatus
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            filename=document.filename,
            content_type=document.content_type,
            size_bytes=document.size_bytes,
            status=document.status,
            created_at=document.created_at,
            updated_at=document.updated_at,
            metadata=dict(document.metadata),
        )


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int


class ChunkResponse(BaseModel):
    id: str
    document_id: str
    content: str
    chunk_index: int
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkResponse":
        return cls(
            id=chunk.id,
            document_id=chunk.document_id,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            created_at=chunk.created_at,
            metadata=dict(chunk.metadata),
        )


class ChatRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255, description="Client-chosen conversation key")
    query: str = Field(..., min_length=1, description="End-user question to answer")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_k: Optional[int] = Field(
        default=None,
        ge=1,
        description="Override the number of retrieved chunks (clamped to the configured maximum)",
    )


class SourceModel(BaseModel):
    document_id: str
    chunk_id: str
    filename: str
    chunk_index: int
    similarity_score: float

    @classmethod
    def from_reference(cls, source: SourceReference) -> "SourceModel":
        return cls(**source.to_dict())


class ChatResponse(BaseModel):
    answer: str
    sources: List[SourceModel]
    session_id: str
    conversation_id: str
    message_id: str
    latency_ms: float
    retrieval_ms: Optional[float] = None
    generation_ms: Optional[float] = None

    @classmethod
    def from_answer(cls, answer: ChatAnswer) -> "ChatResponse":
        return cls(
            answer=answer.text,
            sources=[SourceModel.from_reference(source) for source in answer.sources],
            session_id=answer.session_id,
            conversation_id=answer.conversation_id,
            message_id=answer.message_id,
            latency_ms=answer.latency_ms,
            retrieval_ms=answer.retrieval_ms,
            generation_ms=answer.generation_ms,
        )


class MessageResponse(BaseModel):
    id: str
    role: MessageRole
    content: str
    created_at: datetime
    sources: Optional[List[SourceModel]] = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        sources = None
        if message.sources is not None:
            sources = [SourceModel.from_reference(source) for source in message.sources]
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            sources=sources,
        )


class ConversationHistoryResponse(BaseModel):
    session_id: str
    conversation_id: str
    title: Optional[str] = None
    messages: List[MessageResponse]


class HealthResponse(BaseModel):
    status: Literal["UP", "DOWN"]
    version: Optional[str] = None
    environment: Optional[str] = None


class ComponentHealthResponse(BaseModel):
    status: Literal["UP", "DOWN"]
    detail: str


class ProvidersHealthResponse(BaseModel):
    status: Literal["UP", "DOWN"]
    embedding: ComponentHealthResponse
    generation: ComponentHealthResponse

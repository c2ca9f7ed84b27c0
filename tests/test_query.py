"""Tests for the chat query pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import chromadb
import pytest

from wikirag.conversations.store import SqlConversationStore
from wikirag.embeddings.service import EmbeddingConfig, HashEmbeddingProvider
from wikirag.embeddings.store import ChromaKnowledgeStore
from wikirag.errors import EmbeddingError, GenerationError, NotFoundError
from wikirag.extraction.service import ExtractorRegistry
from wikirag.ingestion.service import IngestionConfig, IngestionPipeline
from wikirag.models import Chunk, Document, DocumentStatus, MessageRole, ScoredChunk
from wikirag.retrieval.service import RetrievalConfig, VectorRetriever
from wikirag.services.generation import NO_CONTEXT_ANSWER, TemplateGenerationProvider
from wikirag.services.query import NO_CONTEXT_INSTRUCTION, PromptBuilder, QueryPipeline
from wikirag.storage.database import build_engine, build_session_factory

DIM = 16


class RecordingGenerator(TemplateGenerationProvider):
    def __init__(self) -> None:
        self.calls: list[tuple[str, float | None]] = []

    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        self.calls.append((prompt, temperature))
        return super().generate(prompt, temperature=temperature)


class FailingGenerator(TemplateGenerationProvider):
    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        raise GenerationError("model overloaded")


class FailingEmbedder(HashEmbeddingProvider):
    def embed(self, text: str):
        raise EmbeddingError("provider unavailable")


class Harness:
    def __init__(self, tmp_path: Path, *, generator=None, embedder=None, max_top_k: int = 20) -> None:
        sessions = build_session_factory(build_engine(f"sqlite:///{tmp_path / 'wikirag.db'}"))
        self.store = ChromaKnowledgeStore(
            sessions,
            collection_name=f"test-{uuid4().hex}",
            client=chromadb.EphemeralClient(),
            dimension=DIM,
        )
        self.conversations = SqlConversationStore(sessions)
        hash_embedder = HashEmbeddingProvider(EmbeddingConfig(dim=DIM))
        self.ingestion = IngestionPipeline(
            self.store,
            ExtractorRegistry(),
            hash_embedder,
            config=IngestionConfig(chunk_size=200, chunk_overlap=20),
        )
        self.generator = generator or RecordingGenerator()
        self.pipeline = QueryPipeline(
            self.conversations,
            embedder or hash_embedder,
            VectorRetriever(self.store, RetrievalConfig(top_k=3, max_top_k=max_top_k)),
            self.generator,
        )

    def messages(self, session_id: str):
        conversation = self.conversations.get_by_session(session_id)
        return self.conversations.list_messages(conversation.id)


def test_new_session_creates_conversation_and_two_messages(tmp_path: Path):
    harness = Harness(tmp_path)
    harness.ingestion.ingest(b"Paris is the capital of France.", "facts.txt", "text/plain")

    answer = harness.pipeline.chat("session-1", "Paris is the capital of France.")

    messages = harness.messages("session-1")
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert messages[1].id == answer.message_id
    assert messages[1].sources == list(answer.sources)
    assert answer.sources[0].filename == "facts.txt"
    assert answer.sources[0].similarity_score == pytest.approx(1.0, abs=1e-5)
    assert "Paris is the capital of France." in answer.text
    assert harness.conversations.get_by_session("session-1").title == "Paris is the capital of France."


def test_second_turn_reuses_conversation_and_carries_history(tmp_path: Path):
    harness = Harness(tmp_path)
    first = harness.pipeline.chat("session-1", "first question")
    second = harness.pipeline.chat("session-1", "second question", temperature=0.2)

    assert first.conversation_id == second.conversation_id
    assert len(harness.messages("session-1")) == 4
    prompt, temperature = harness.generator.calls[-1]
    assert "Previous conversation:" in prompt
    assert "User: first question" in prompt
    assert temperature == 0.2


def test_without_documents_answers_that_context_is_missing(tmp_path: Path):
    harness = Harness(tmp_path)
    answer = harness.pipeline.chat("session-1", "anything there?")

    assert answer.text == NO_CONTEXT_ANSWER
    assert list(answer.sources) == []
    assert NO_CONTEXT_INSTRUCTION in harness.generator.calls[0][0]


def test_generation_failure_keeps_only_user_message(tmp_path: Path):
    harness = Harness(tmp_path, generator=FailingGenerator())
    with pytest.raises(GenerationError):
        harness.pipeline.chat("session-1", "will this fail?")

    messages = harness.messages("session-1")
    assert [m.role for m in messages] == [MessageRole.USER]
    assert messages[0].content == "will this fail?"


def test_embedding_failure_keeps_only_user_message(tmp_path: Path):
    harness = Harness(tmp_path, embedder=FailingEmbedder(EmbeddingConfig(dim=DIM)))
    with pytest.raises(EmbeddingError):
        harness.pipeline.chat("session-1", "question")

    assert [m.role for m in harness.messages("session-1")] == [MessageRole.USER]


def test_top_k_is_clamped_to_configured_maximum(tmp_path: Path):
    harness = Harness(tmp_path, max_top_k=2)
    text = " ".join(f"fact{i}" for i in range(300)).encode("utf-8")
    document = harness.ingestion.ingest(text, "facts.txt", "text/plain")
    assert len(harness.store.list_chunks(document.id)) > 2

    answer = harness.pipeline.chat("session-1", "fact1", top_k=10)

    assert len(answer.sources) == 2


def test_blank_question_rejected_before_any_write(tmp_path: Path):
    harness = Harness(tmp_path)
    with pytest.raises(ValueError):
        harness.pipeline.chat("session-1", "   ")
    with pytest.raises(NotFoundError):
        harness.conversations.get_by_session("session-1")


def test_prompt_numbers_context_blocks_in_given_order():
    now = datetime.now(timezone.utc)
    document = Document(
        id="doc-1",
        filename="guide.md",
        content_type="text/markdown",
        size_bytes=10,
        status=DocumentStatus.COMPLETED,
        created_at=now,
        updated_at=now,
    )
    retrieved = [
        ScoredChunk(
            chunk=Chunk(id=f"c{i}", document_id="doc-1", content=f"content {i}", chunk_index=i, created_at=now),
            document=document,
            score=1.0 - i / 10,
        )
        for i in (4, 1)
    ]

    prompt = PromptBuilder().build("What now?", retrieved)

    assert "[1] [Document: guide.md, Chunk 4]\ncontent 4" in prompt
    assert "[2] [Document: guide.md, Chunk 1]\ncontent 1" in prompt
    assert prompt.index("content 4") < prompt.index("content 1")
    assert "Question: What now?" in prompt
    assert NO_CONTEXT_INSTRUCTION not in prompt

"""Query orchestration combining conversation state, retrieval and generation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

from wikirag.conversations.store import ConversationStore, make_title, validate_session_id
from wikirag.embeddings.service import EmbeddingProvider
from wikirag.errors import EmbeddingError, GenerationError
from wikirag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from wikirag.models import ChatAnswer, Message, MessageRole, ScoredChunk, SourceReference
from wikirag.retrieval.service import Retriever
from wikirag.services.generation import GenerationProvider, TemplateGenerationProvider

PROMPT_TEMPLATE = """You are a helpful assistant that answers questions based on the provided context.

Context from documents:
{context}

{history}Question: {question}

{instruction}

Answer:"""

CONTEXT_INSTRUCTION = (
    "Answer based on the context above. If the context does not contain enough information to answer "
    "the question, say so. Use only the information provided in the context."
)
NO_CONTEXT_INSTRUCTION = (
    "No relevant document context is available. Tell the user that you do not have enough information "
    "in the documents to answer the question."
)
NO_CONTEXT_PLACEHOLDER = "(no relevant documents found)"


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    citation_prefix: str = "["
    citation_suffix: str = "]"


class PromptBuilder:
    """Builds prompts for the generation backend."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def build_context(self, retrieved: Sequence[ScoredChunk]) -> str:
        if not retrieved:
            return ""
        blocks = []
        for index, item in enumerate(retrieved, start=1):
            prefix = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            header = f"[Document: {item.document.filename}, Chunk {item.chunk.chunk_index}]"
            blocks.append(f"{prefix} {header}\n{item.chunk.content}")
        return "\n\n".join(blocks)

    @staticmethod
    def build_history(history: Sequence[Message]) -> str:
        if not history:
            return ""
        lines = ["Previous conversation:"]
        for message in history:
            speaker = "User" if message.role is MessageRole.USER else "Assistant"
            lines.append(f"{speaker}: {message.content}")
        return "\n".join(lines) + "\n\n"

    def build(self, question: str, retrieved: Sequence[ScoredChunk], history: Sequence[Message] = ()) -> str:
        context = self.build_context(retrieved)
        return PROMPT_TEMPLATE.format(
            context=context or NO_CONTEXT_PLACEHOLDER,
            history=self.build_history(history),
            question=question.strip(),
            instruction=CONTEXT_INSTRUCTION if context else NO_CONTEXT_INSTRUCTION,
        )


@dataclass(frozen=True)
class QueryConfig:
    """``history_turns`` counts question/answer pairs fed back into the prompt."""

    history_turns: int = 3


class QueryPipeline:
    """Answers one chat turn and records it in the session's conversation.

    The USER message is written before any provider call, so it survives
    embedding and generation failures. The ASSISTANT message is written only
    after a successful generation.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        embedder: EmbeddingProvider,
        retriever: Retriever,
        generator: GenerationProvider | None = None,
        prompt_builder: PromptBuilder | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        self._conversations = conversations
        self._embedder = embedder
        self._retriever = retriever
        self._generator = generator or TemplateGenerationProvider()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._config = config or QueryConfig()
        self._logger = get_logger("query")

    def chat(
        self,
        session_id: str,
        question: str,
        *,
        temperature: float | None = None,
        top_k: int | None = None,
    ) -> ChatAnswer:
        validate_session_id(session_id)
        if question is None or not question.strip():
            raise ValueError("Query cannot be null or empty")
        start = time.perf_counter()

        conversation = self._conversations.get_or_create(session_id, title=make_title(question))
        history: Sequence[Message] = ()
        if self._config.history_turns > 0:
            history = self._conversations.recent_messages(conversation.id, self._config.history_turns * 2)
        self._conversations.append_message(conversation.id, MessageRole.USER, question)

        try:
            vector = self._embedder.embed(question)
        except EmbeddingError as exc:
            PipelineMetrics.record_chat_failure("embedding")
            self._logger.error("query.embedding_failed", session_id=session_id, error=str(exc))
            raise

        try:
            with TimedSection() as retrieval_timer:
                retrieved = self._retriever.retrieve(vector, top_k=top_k)
        except Exception as exc:
            PipelineMetrics.record_chat_failure("retrieval")
            self._logger.error("query.retrieval_failed", session_id=session_id, error=str(exc))
            raise
        PipelineMetrics.observe_retrieval(
            retrieval_timer.elapsed,
            len(retrieved),
            (item.score for item in retrieved),
        )
        self._logger.info(
            "retrieval.complete",
            session_id=session_id,
            chunk_count=len(retrieved),
            duration_seconds=retrieval_timer.elapsed,
            top_k=top_k,
        )

        prompt = self._prompt_builder.build(question, retrieved, history)
        try:
            with TimedSection(PipelineMetrics.observe_generation) as generation_timer:
                text = self._generator.generate(prompt, temperature=temperature)
        except GenerationError as exc:
            PipelineMetrics.record_chat_failure("generation")
            self._logger.error("query.generation_failed", session_id=session_id, error=str(exc))
            raise
        self._logger.info(
            "generation.complete",
            session_id=session_id,
            duration_seconds=generation_timer.elapsed,
            answer_chars=len(text),
        )

        sources = [
            SourceReference(
                document_id=item.document.id,
                chunk_id=item.chunk.id,
                filename=item.document.filename,
                chunk_index=item.chunk.chunk_index,
                similarity_score=item.score,
            )
            for item in retrieved
        ]
        latency_ms = (time.perf_counter() - start) * 1000
        assistant = self._conversations.append_message(
            conversation.id,
            MessageRole.ASSISTANT,
            text,
            sources=sources,
            metadata={"latency_ms": round(latency_ms, 3)},
        )
        return ChatAnswer(
            text=text,
            sources=sources,
            session_id=session_id,
            conversation_id=conversation.id,
            message_id=assistant.id,
            latency_ms=latency_ms,
            retrieval_ms=retrieval_timer.elapsed * 1000,
            generation_ms=generation_timer.elapsed * 1000,
        )


__all__ = ["PromptBuilder", "PromptBuilderConfig", "QueryConfig", "QueryPipeline"]

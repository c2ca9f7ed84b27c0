"""Document ingestion service for wikirag."""

from __future__ import annotations

import time
from dataclasses import dataclass
from uuid import uuid4
from typing import Any, Mapping, Sequence

from wikirag.embeddings.service import EmbeddingProvider
from wikirag.embeddings.store import KnowledgeStore
from wikirag.errors import EmbeddingError, ExtractionError, InvalidChunkParametersError, SupersededRunError
from wikirag.extraction.service import ExtractorRegistry, normalize_content_type
from wikirag.ingestion.chunker import Chunker
from wikirag.metrics.observability import PipelineMetrics, get_logger
from wikirag.models import Document, DocumentStatus, NewChunk

_PIPELINE_KEYS = ("error", "error_type", "chunk_count")


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document ingestion."""

    chunk_size: int = 2000
    chunk_overlap: int = 200


def _user_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in metadata.items() if key not in _PIPELINE_KEYS}


class IngestionPipeline:
    """Turns uploaded bytes into stored, searchable chunks.

    ``run`` owns the document's status: it always leaves the document
    COMPLETED or FAILED, and a FAILED document never keeps chunks. When a
    newer run claims the same document the older one stops writing and the
    newer run decides the outcome.
    """

    _logger = get_logger("ingestion")

    def __init__(
        self,
        store: KnowledgeStore,
        extractors: ExtractorRegistry,
        embedder: EmbeddingProvider,
        chunker: Chunker | None = None,
        config: IngestionConfig | None = None,
    ) -> None:
        self._store = store
        self._extractors = extractors
        self._embedder = embedder
        self._chunker = chunker or Chunker()
        self._config = config or IngestionConfig()

    @property
    def config(self) -> IngestionConfig:
        return self._config

    def supports(self, content_type: str | None) -> bool:
        return self._extractors.supports(content_type)

    def register(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        *,
        size_bytes: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Document:
        if not filename or not filename.strip():
            raise ValueError("Filename cannot be null or blank")
        normalized = normalize_content_type(content_type)
        if not self._extractors.supports(normalized):
            raise ExtractionError(f"Unsupported content type: {normalized or '<none>'}", normalized)
        size = len(content) if size_bytes is None else size_bytes
        return self._store.create_document(filename.strip(), normalized, size, metadata)

    def run(
        self,
        document_id: str,
        content: bytes,
        *,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> Document:
        size = self._config.chunk_size if chunk_size is None else chunk_size
        step_overlap = self._config.chunk_overlap if overlap is None else overlap
        if not Chunker.is_valid(size, step_overlap):
            raise InvalidChunkParametersError(size, step_overlap)

        document = self._store.get_document(document_id)
        base_metadata = _user_metadata(document.metadata)
        run_id = uuid4().hex
        self._store.claim(document_id, run_id, metadata=base_metadata)
        start = time.perf_counter()
        self._logger.info(
            "ingestion.start",
            document_id=document_id,
            run_id=run_id,
            filename=document.filename,
            content_type=document.content_type,
            size_bytes=len(content),
        )
        try:
            text = self._extractors.extract(content, document.content_type)
            chunks: list[NewChunk] = []
            if not text.strip():
                self._logger.warning("ingestion.empty_text", document_id=document_id)
            else:
                segments = self._chunker.split(text, size, step_overlap)
                vectors = self._embed(segments)
                chunks = [
                    NewChunk(content=segment, chunk_index=index, embedding=vector)
                    for index, (segment, vector) in enumerate(zip(segments, vectors))
                ]
            self._store.save_chunks(document_id, chunks, run_id=run_id)
            return self._complete(document_id, run_id, base_metadata, len(chunks), start)
        except SupersededRunError:
            return self._superseded(document_id, run_id)
        except Exception as exc:
            return self._fail(document_id, run_id, base_metadata, exc, start)

    def reprocess(
        self,
        document_id: str,
        content: bytes,
        *,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> Document:
        """Re-run ingestion for an existing document, replacing its chunks."""

        return self.run(document_id, content, chunk_size=chunk_size, overlap=overlap)

    def ingest(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        *,
        metadata: Mapping[str, Any] | None = None,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> Document:
        """Register and run synchronously; convenient for scripts and tests."""

        document = self.register(content, filename, content_type, metadata=metadata)
        return self.run(document.id, content, chunk_size=chunk_size, overlap=overlap)

    def _embed(self, segments: Sequence[str]) -> Sequence[tuple[float, ...]]:
        vectors = self._embedder.embed_batch(segments)
        if len(vectors) != len(segments):
            raise EmbeddingError(f"Expected {len(segments)} embeddings but got {len(vectors)}")
        expected = self._embedder.dimension()
        for index, vector in enumerate(vectors):
            if len(vector) != expected:
                raise EmbeddingError(f"Embedding {index} has dimension {len(vector)}, expected {expected}")
        return vectors

    def _complete(
        self,
        document_id: str,
        run_id: str,
        metadata: dict[str, Any],
        chunk_count: int,
        start: float,
    ) -> Document:
        document = self._store.set_status(
            document_id,
            DocumentStatus.COMPLETED,
            metadata={**metadata, "chunk_count": chunk_count},
            run_id=run_id,
        )
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, chunk_count, DocumentStatus.COMPLETED.value)
        self._logger.info(
            "ingestion.complete",
            document_id=document_id,
            chunk_count=chunk_count,
            duration_seconds=duration,
        )
        return document

    def _fail(
        self,
        document_id: str,
        run_id: str,
        metadata: dict[str, Any],
        exc: Exception,
        start: float,
    ) -> Document:
        try:
            # FAILED also drops whatever chunk set the document still has.
            document = self._store.set_status(
                document_id,
                DocumentStatus.FAILED,
                metadata={**metadata, "error": str(exc), "error_type": type(exc).__name__},
                run_id=run_id,
            )
        except SupersededRunError:
            return self._superseded(document_id, run_id)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, 0, DocumentStatus.FAILED.value)
        self._logger.error(
            "ingestion.failed",
            document_id=document_id,
            error=str(exc),
            error_type=type(exc).__name__,
            duration_seconds=duration,
            exc_info=not isinstance(exc, (ExtractionError, EmbeddingError)),
        )
        return document

    def _superseded(self, document_id: str, run_id: str) -> Document:
        PipelineMetrics.record_superseded_run()
        self._logger.warning("ingestion.superseded", document_id=document_id, run_id=run_id)
        return self._store.get_document(document_id)


__all__ = ["IngestionConfig", "IngestionPipeline"]

"""Knowledge store: documents and chunks with top-K similarity search."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wikirag.config import Settings
from wikirag.errors import NotFoundError, StorageError, SupersededRunError
from wikirag.metrics.observability import get_logger
from wikirag.models import Chunk, Document, DocumentStatus, NewChunk, ScoredChunk
from wikirag.storage.database import ping, session_scope
from wikirag.storage.tables import ChunkRow, DocumentRow

_logger = get_logger("store")


class KnowledgeStore(Protocol):
    """Protocol for document/chunk persistence with vector search."""

    def create_document(
        self,
        filename: str,
        content_type: str,
        size_bytes: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> Document:
        """Persist a new document in PROCESSING state."""

    def get_document(self, document_id: str) -> Document:
        """Return the document or raise ``NotFoundError``."""

    def list_documents(self) -> Sequence[Document]:
        """Return all documents, newest first."""

    def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        metadata: Mapping[str, Any] | None = None,
        run_id: str | None = None,
    ) -> Document:
        """Move a document to ``status``, replacing metadata when given.

        With ``run_id`` the change only applies while that run owns the
        document. Moving to FAILED also removes the document's chunks.
        """

    def claim(self, document_id: str, run_id: str, *, metadata: Mapping[str, Any] | None = None) -> Document:
        """Set PROCESSING and hand ownership of the chunk set to ``run_id``."""

    def delete_document(self, document_id: str) -> None:
        """Delete a document and all of its chunks."""

    def delete_chunks(self, document_id: str) -> int:
        """Delete every chunk of a document, returning how many were removed."""

    def save_chunks(
        self,
        document_id: str,
        chunks: Sequence[NewChunk],
        *,
        run_id: str | None = None,
    ) -> Sequence[Chunk]:
        """Replace the document's chunk set with ``chunks``, all or nothing."""

    def list_chunks(self, document_id: str, *, include_embeddings: bool = False) -> Sequence[Chunk]:
        """Return a document's chunks in index order."""

    def search(self, vector: Sequence[float], *, top_k: int = 5) -> Sequence[ScoredChunk]:
        """Return the top-k chunks of completed documents most similar to ``vector``."""

    def count_chunks(self) -> int:
        """Return the total number of stored chunks."""

    def healthy(self) -> bool:
        """Return True when both backing engines respond."""


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        filename=row.filename,
        content_type=row.content_type,
        size_bytes=row.size_bytes,
        status=DocumentStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        metadata=dict(row.metadata_ or {}),
    )


def _to_chunk(row: ChunkRow, embedding: Sequence[float] | None = None) -> Chunk:
    return Chunk(
        id=row.id,
        document_id=row.document_id,
        content=row.content,
        chunk_index=row.chunk_index,
        created_at=row.created_at,
        embedding=tuple(float(value) for value in embedding) if embedding is not None else None,
        metadata=dict(row.metadata_ or {}),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(exc: Exception) -> str:
    # SQLAlchemy messages embed the statement parameters, i.e. chunk text.
    orig = getattr(exc, "orig", None)
    if isinstance(exc, SQLAlchemyError) and orig is not None:
        return f"{type(orig).__name__}: {orig}"
    return f"{type(exc).__name__}: {exc}"


class ChromaKnowledgeStore:
    """Relational rows via SQLAlchemy, chunk vectors in a cosine Chroma collection.

    Every chunk row has exactly one vector in the collection under the same
    id, tagged with ``document_id`` and ``chunk_index``.

    Ingestion runs ``claim`` a document before writing. The latest claim
    wins: writes made with an older ``run_id`` raise ``SupersededRunError``
    and change nothing.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        collection_name: str = "wikirag-chunks",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        dimension: int | None = None,
        tie_window: int = 5,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self._sessions = session_factory
        self._dimension = dimension
        self._tie_window = tie_window

    # Documents -----------------------------------------------------------

    def create_document(
        self,
        filename: str,
        content_type: str,
        size_bytes: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> Document:
        with session_scope(self._sessions) as session:
            row = DocumentRow(
                filename=filename,
                content_type=content_type,
                size_bytes=size_bytes,
                status=DocumentStatus.PROCESSING.value,
                metadata_=dict(metadata) if metadata else None,
            )
            session.add(row)
            session.flush()
            document = _to_document(row)
        _logger.info("document.created", document_id=document.id, filename=filename, content_type=content_type)
        return document

    def get_document(self, document_id: str) -> Document:
        with session_scope(self._sessions) as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise NotFoundError("Document", document_id)
            return _to_document(row)

    def list_documents(self) -> Sequence[Document]:
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(DocumentRow).order_by(DocumentRow.created_at.desc(), DocumentRow.id)
            ).scalars()
            return [_to_document(row) for row in rows]

    def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        metadata: Mapping[str, Any] | None = None,
        run_id: str | None = None,
    ) -> Document:
        removed: list[str] = []
        with session_scope(self._sessions) as session:
            if run_id is not None:
                self._check_owner(session, document_id, run_id)
            row = session.get(DocumentRow, document_id, with_for_update=True)
            if row is None:
                raise NotFoundError("Document", document_id)
            row.status = status.value
            if metadata is not None:
                row.metadata_ = dict(metadata)
            if status is DocumentStatus.FAILED:
                removed = self._delete_chunk_rows(session, document_id)
            session.flush()
            document = _to_document(row)
        if removed:
            self._discard_vectors(removed)
        _logger.debug("document.status", document_id=document_id, status=status.value)
        return document

    def claim(self, document_id: str, run_id: str, *, metadata: Mapping[str, Any] | None = None) -> Document:
        values: dict[Any, Any] = {DocumentRow.status: DocumentStatus.PROCESSING.value, DocumentRow.run_id: run_id}
        if metadata is not None:
            values[DocumentRow.metadata_] = dict(metadata)
        with session_scope(self._sessions) as session:
            claimed = session.execute(
                update(DocumentRow).where(DocumentRow.id == document_id).values(values)
            ).rowcount
            if not claimed:
                raise NotFoundError("Document", document_id)
            document = _to_document(session.get(DocumentRow, document_id, populate_existing=True))
        _logger.debug("document.claimed", document_id=document_id, run_id=run_id)
        return document

    def delete_document(self, document_id: str) -> None:
        with session_scope(self._sessions) as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise NotFoundError("Document", document_id)
            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            session.delete(row)
            session.flush()
            self._collection.delete(where={"document_id": document_id})
        _logger.info("document.deleted", document_id=document_id)

    # Chunks --------------------------------------------------------------

    def delete_chunks(self, document_id: str) -> int:
        with session_scope(self._sessions) as session:
            removed = self._delete_chunk_rows(session, document_id)
        if removed:
            self._discard_vectors(removed)
            _logger.info("chunks.deleted", document_id=document_id, count=len(removed))
        return len(removed)

    def save_chunks(
        self,
        document_id: str,
        chunks: Sequence[NewChunk],
        *,
        run_id: str | None = None,
    ) -> Sequence[Chunk]:
        if self._dimension is not None:
            for chunk in chunks:
                if len(chunk.embedding) != self._dimension:
                    raise StorageError(
                        f"Chunk {chunk.chunk_index} has dimension {len(chunk.embedding)}, "
                        f"store expects {self._dimension}"
                    )
        added_ids: list[str] = []
        try:
            with session_scope(self._sessions) as session:
                if run_id is not None:
                    self._check_owner(session, document_id, run_id)
                elif session.get(DocumentRow, document_id) is None:
                    raise NotFoundError("Document", document_id)
                replaced = self._delete_chunk_rows(session, document_id)
                rows = [
                    ChunkRow(
                        document_id=document_id,
                        content=chunk.content,
                        chunk_index=chunk.chunk_index,
                        metadata_=dict(chunk.metadata) if chunk.metadata else None,
                    )
                    for chunk in chunks
                ]
                if rows:
                    session.add_all(rows)
                    session.flush()
                    ids = [row.id for row in rows]
                    self._collection.add(
                        ids=ids,
                        embeddings=[list(chunk.embedding) for chunk in chunks],
                        metadatas=[{"document_id": document_id, "chunk_index": chunk.chunk_index} for chunk in chunks],
                    )
                    added_ids = ids
                saved = [_to_chunk(row, chunk.embedding) for row, chunk in zip(rows, chunks)]
        except (NotFoundError, SupersededRunError):
            raise
        except Exception as exc:
            if added_ids:
                self._discard_vectors(added_ids)
            reason = _describe(exc)
            _logger.error("chunks.save_failed", document_id=document_id, error=reason)
            raise StorageError(f"Failed to persist chunks for document {document_id}: {reason}") from exc
        # Old vectors go only once the new rows are committed.
        if replaced:
            self._discard_vectors(replaced)
        _logger.info("chunks.saved", document_id=document_id, count=len(saved), replaced=len(replaced))
        return saved

    def list_chunks(self, document_id: str, *, include_embeddings: bool = False) -> Sequence[Chunk]:
        with session_scope(self._sessions) as session:
            if session.get(DocumentRow, document_id) is None:
                raise NotFoundError("Document", document_id)
            rows = list(
                session.execute(
                    select(ChunkRow).where(ChunkRow.document_id == document_id).order_by(ChunkRow.chunk_index)
                ).scalars()
            )
        if not include_embeddings or not rows:
            return [_to_chunk(row) for row in rows]
        fetched = self._collection.get(ids=[row.id for row in rows], include=["embeddings"])
        vectors = dict(zip(fetched["ids"], fetched["embeddings"]))
        return [_to_chunk(row, vectors.get(row.id)) for row in rows]

    def search(self, vector: Sequence[float], *, top_k: int = 5) -> Sequence[ScoredChunk]:
        if top_k <= 0:
            return []
        with session_scope(self._sessions) as session:
            completed = list(
                session.execute(
                    select(DocumentRow.id).where(DocumentRow.status == DocumentStatus.COMPLETED.value)
                ).scalars()
            )
            if not completed:
                return []
            available = session.execute(
                select(func.count(ChunkRow.id)).where(ChunkRow.document_id.in_(completed))
            ).scalar_one()
        if not available:
            return []
        n_results = min(available, top_k + self._tie_window)
        while True:
            results = self._collection.query(
                query_embeddings=[list(vector)],
                n_results=n_results,
                where={"document_id": {"$in": completed}},
                include=["distances"],
            )
            ids = self._first(results.get("ids"))
            distances = self._first(results.get("distances"))
            if n_results >= available or len(distances) < n_results or len(distances) <= top_k:
                break
            # Widen until the candidate set holds every chunk tied with the k-th score.
            if round(1.0 - float(distances[top_k - 1]), 6) != round(1.0 - float(distances[-1]), 6):
                break
            n_results = min(available, n_results * 2)
        scores = {chunk_id: 1.0 - float(distance) for chunk_id, distance in zip(ids, distances)}
        if not scores:
            return []

        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(ChunkRow, DocumentRow)
                .join(DocumentRow, ChunkRow.document_id == DocumentRow.id)
                .where(ChunkRow.id.in_(list(scores)), DocumentRow.status == DocumentStatus.COMPLETED.value)
            ).all()
            scored = [
                ScoredChunk(chunk=_to_chunk(chunk_row), document=_to_document(doc_row), score=scores[chunk_row.id])
                for chunk_row, doc_row in rows
            ]
        # Equal similarity: newer document first, then document order.
        scored.sort(
            key=lambda item: (
                -round(item.score, 6),
                -item.document.created_at.timestamp(),
                item.chunk.chunk_index,
                item.document.id,
            )
        )
        return scored[:top_k]

    def count_chunks(self) -> int:
        with session_scope(self._sessions) as session:
            return int(session.execute(select(func.count(ChunkRow.id))).scalar_one())

    def healthy(self) -> bool:
        if not ping(self._sessions):
            return False
        try:
            self._client.heartbeat()
            return True
        except Exception as exc:
            _logger.warning("store.health_failed", error=str(exc))
            return False

    @staticmethod
    def _check_owner(session: Session, document_id: str, run_id: str) -> None:
        # A write first, so the row stays locked until the transaction ends.
        owned = session.execute(
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.run_id == run_id)
            .values({DocumentRow.updated_at: _utcnow()})
        ).rowcount
        if owned:
            return
        if session.get(DocumentRow, document_id) is None:
            raise NotFoundError("Document", document_id)
        raise SupersededRunError(document_id, run_id)

    @staticmethod
    def _delete_chunk_rows(session: Session, document_id: str) -> list[str]:
        ids = list(session.execute(select(ChunkRow.id).where(ChunkRow.document_id == document_id)).scalars())
        if ids:
            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
        return ids

    def _discard_vectors(self, ids: Sequence[str]) -> None:
        try:
            self._collection.delete(ids=list(ids))
        except Exception as exc:  # pragma: no cover
            _logger.error("chunks.vector_rollback_failed", count=len(ids), error=str(exc))

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            return list(value[0])
        return []


def build_knowledge_store(settings: Settings, session_factory: sessionmaker) -> ChromaKnowledgeStore:
    """Build the store against a remote Chroma server when configured, else on local disk."""

    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    return ChromaKnowledgeStore(
        session_factory,
        collection_name=settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
        dimension=settings.embedding_dim,
    )


__all__ = ["ChromaKnowledgeStore", "KnowledgeStore", "build_knowledge_store"]

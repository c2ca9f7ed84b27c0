"""FastAPI application exposing wikirag services."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from wikirag.api.schemas import (
    ChatRequest,
    ChatResponse,
    ChunkResponse,
    ComponentHealthResponse,
    ConversationHistoryResponse,
    DocumentListResponse,
    DocumentResponse,
    HealthResponse,
    MessageResponse,
    ProvidersHealthResponse,
)
from wikirag.config import Settings, get_settings
from wikirag.conversations.store import ConversationStore, SqlConversationStore
from wikirag.embeddings.service import EmbeddingProvider, build_embedding_provider
from wikirag.embeddings.store import KnowledgeStore, build_knowledge_store
from wikirag.errors import (
    EmbeddingError,
    ExtractionError,
    GenerationError,
    InvalidChunkParametersError,
    NotFoundError,
    StorageError,
)
from wikirag.extraction.service import ExtractorRegistry, normalize_content_type
from wikirag.ingestion.chunker import Chunker
from wikirag.ingestion.service import IngestionConfig, IngestionPipeline
from wikirag.metrics.observability import (
    PipelineMetrics,
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    get_logger,
)
from wikirag.models import DocumentStatus
from wikirag.retrieval.service import RetrievalConfig, VectorRetriever
from wikirag.services.generation import GenerationProvider, build_generation_provider
from wikirag.services.query import QueryConfig, QueryPipeline
from wikirag.storage.database import build_engine, build_session_factory

# Browsers often send octet-stream for these; fall back to the extension.
_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_GENERIC_TYPES = {"", "application/octet-stream"}
_READ_BLOCK = 1024 * 1024


@dataclass(frozen=True)
class AppDependencies:
    store: KnowledgeStore
    conversations: ConversationStore
    ingestion: IngestionPipeline
    query: QueryPipeline
    embedder: EmbeddingProvider
    generator: GenerationProvider


def _build_dependencies(settings: Settings) -> AppDependencies:
    engine = build_engine(settings.database_url, echo=settings.database_echo)
    sessions = build_session_factory(engine)
    store = build_knowledge_store(settings, sessions)
    conversations = SqlConversationStore(sessions)
    embedder = build_embedding_provider(settings)
    generator = build_generation_provider(settings)
    ingestion = IngestionPipeline(
        store,
        ExtractorRegistry(),
        embedder,
        config=IngestionConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap),
    )
    retriever = VectorRetriever(
        store,
        RetrievalConfig(
            top_k=settings.retrieval_top_k,
            max_top_k=settings.retrieval_max_top_k,
            min_score=settings.similarity_threshold,
        ),
    )
    query = QueryPipeline(
        conversations,
        embedder,
        retriever,
        generator,
        config=QueryConfig(history_turns=settings.history_turns),
    )
    return AppDependencies(
        store=store,
        conversations=conversations,
        ingestion=ingestion,
        query=query,
        embedder=embedder,
        generator=generator,
    )


def resolve_content_type(content_type: str | None, filename: str) -> str:
    normalized = normalize_content_type(content_type)
    if normalized in _GENERIC_TYPES:
        return _EXTENSION_TYPES.get(Path(filename).suffix.lower(), normalized)
    return normalized


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    from wikirag import __version__

    app = FastAPI(title="wikirag API", version=__version__)
    app.state.dependencies = deps

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def _error(request: Request, status_code: int, detail: str, event: str, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        log = logger.error if status_code >= 500 else logger.warning
        log(event, correlation_id=correlation_id, detail=str(exc), path=request.url.path)
        return JSONResponse(status_code=status_code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, str(exc), "request.not_found", exc)

    @app.exception_handler(InvalidChunkParametersError)
    async def handle_invalid_chunking(request: Request, exc: InvalidChunkParametersError) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, str(exc), "request.invalid_chunking", exc)

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, str(exc), "request.invalid", exc)

    @app.exception_handler(ExtractionError)
    async def handle_extraction_error(request: Request, exc: ExtractionError) -> JSONResponse:
        return _error(request, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, str(exc), "request.unsupported_content", exc)

    @app.exception_handler(EmbeddingError)
    async def handle_embedding_error(request: Request, exc: EmbeddingError) -> JSONResponse:
        return _error(request, status.HTTP_502_BAD_GATEWAY, f"Embedding provider failed: {exc}", "embedding.error", exc)

    @app.exception_handler(GenerationError)
    async def handle_generation_error(request: Request, exc: GenerationError) -> JSONResponse:
        return _error(request, status.HTTP_502_BAD_GATEWAY, f"Generation provider failed: {exc}", "generation.error", exc)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "storage.error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", "unhandled.error", exc)

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> KnowledgeStore:
        return dep.store

    def get_conversations(dep: AppDependencies = Depends(get_dependencies)) -> ConversationStore:
        return dep.conversations

    def get_ingestion(dep: AppDependencies = Depends(get_dependencies)) -> IngestionPipeline:
        return dep.ingestion

    def get_query(dep: AppDependencies = Depends(get_dependencies)) -> QueryPipeline:
        return dep.query

    async def read_upload(upload: UploadFile) -> bytes:
        limit = settings.max_upload_size_bytes
        buffer = bytearray()
        try:
            while True:
                block = await upload.read(_READ_BLOCK)
                if not block:
                    break
                buffer.extend(block)
                if len(buffer) > limit:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File too large (>{settings.max_upload_size_mb}MB): {upload.filename}",
                    )
        finally:
            await upload.close()
        if not buffer:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {upload.filename}")
        return bytes(buffer)

    def check_chunking(chunk_size: int | None, overlap: int | None, pipeline: IngestionPipeline) -> None:
        size = pipeline.config.chunk_size if chunk_size is None else chunk_size
        step_overlap = pipeline.config.chunk_overlap if overlap is None else overlap
        if not Chunker.is_valid(size, step_overlap):
            raise InvalidChunkParametersError(size, step_overlap)

    @app.post("/api/documents/upload", response_model=DocumentResponse, status_code=status.HTTP_202_ACCEPTED)
    async def upload_document(
        background_tasks: BackgroundTasks,
        file: UploadFile = File(...),
        chunk_size: int | None = Form(default=None),
        overlap: int | None = Form(default=None),
        pipeline: IngestionPipeline = Depends(get_ingestion),
        _auth: None = Depends(require_api_key),
    ) -> DocumentResponse:
        filename = (file.filename or "").strip()
        if not filename:
            await file.close()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File name cannot be null or blank")
        content_type = resolve_content_type(file.content_type, filename)
        if content_type not in settings.allowed_content_types_tuple or not pipeline.supports(content_type):
            await file.close()
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported content type: {content_type or 'unknown'}",
            )
        check_chunking(chunk_size, overlap, pipeline)
        content = await read_upload(file)
        document = pipeline.register(content, filename, content_type)
        background_tasks.add_task(pipeline.run, document.id, content, chunk_size=chunk_size, overlap=overlap)
        logger.info("upload.accepted", document_id=document.id, filename=filename, size_bytes=len(content))
        return DocumentResponse.from_document(document)

    @app.post(
        "/api/documents/{document_id}/reprocess",
        response_model=DocumentResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def reprocess_document(
        document_id: str,
        background_tasks: BackgroundTasks,
        file: UploadFile = File(...),
        chunk_size: int | None = Form(default=None),
        overlap: int | None = Form(default=None),
        pipeline: IngestionPipeline = Depends(get_ingestion),
        store: KnowledgeStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> DocumentResponse:
        document = store.get_document(document_id)
        check_chunking(chunk_size, overlap, pipeline)
        content = await read_upload(file)
        document = store.set_status(document.id, DocumentStatus.PROCESSING)
        background_tasks.add_task(pipeline.reprocess, document.id, content, chunk_size=chunk_size, overlap=overlap)
        logger.info("reprocess.accepted", document_id=document.id, size_bytes=len(content))
        return DocumentResponse.from_document(document)

    @app.get("/api/documents", response_model=DocumentListResponse)
    def list_documents(store: KnowledgeStore = Depends(get_store)) -> DocumentListResponse:
        documents = [DocumentResponse.from_document(document) for document in store.list_documents()]
        return DocumentListResponse(documents=documents, total=len(documents))

    @app.get("/api/documents/{document_id}", response_model=DocumentResponse)
    def get_document(document_id: str, store: KnowledgeStore = Depends(get_store)) -> DocumentResponse:
        return DocumentResponse.from_document(store.get_document(document_id))

    @app.delete("/api/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_document(
        document_id: str,
        store: KnowledgeStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        store.delete_document(document_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/documents/{document_id}/chunks", response_model=list[ChunkResponse])
    def list_chunks(document_id: str, store: KnowledgeStore = Depends(get_store)) -> list[ChunkResponse]:
        return [ChunkResponse.from_chunk(chunk) for chunk in store.list_chunks(document_id)]

    @app.post("/api/chat/query", response_model=ChatResponse)
    def chat_query(
        payload: ChatRequest,
        pipeline: QueryPipeline = Depends(get_query),
        _auth: None = Depends(require_api_key),
    ) -> ChatResponse:
        answer = pipeline.chat(
            payload.session_id,
            payload.query,
            temperature=payload.temperature,
            top_k=payload.top_k,
        )
        return ChatResponse.from_answer(answer)

    @app.get("/api/chat/history/{session_id}", response_model=ConversationHistoryResponse)
    def chat_history(
        session_id: str,
        conversations: ConversationStore = Depends(get_conversations),
    ) -> ConversationHistoryResponse:
        conversation = conversations.get_by_session(session_id)
        messages = conversations.list_messages(conversation.id)
        return ConversationHistoryResponse(
            session_id=conversation.session_id,
            conversation_id=conversation.id,
            title=conversation.title,
            messages=[MessageResponse.from_message(message) for message in messages],
        )

    @app.delete("/api/chat/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_conversation(
        session_id: str,
        conversations: ConversationStore = Depends(get_conversations),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        conversations.delete_by_session(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="UP", version=__version__, environment=settings.environment)

    @app.get("/api/health/db", response_model=ComponentHealthResponse)
    def database_health(dep: AppDependencies = Depends(get_dependencies)) -> JSONResponse:
        up = dep.store.healthy() and dep.conversations.healthy()
        body = ComponentHealthResponse(status="UP" if up else "DOWN", detail="connected" if up else "disconnected")
        if not up:
            logger.warning("health.database_down")
        return JSONResponse(
            status_code=status.HTTP_200_OK if up else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(),
        )

    @app.get("/api/health/providers", response_model=ProvidersHealthResponse)
    def providers_health(dep: AppDependencies = Depends(get_dependencies)) -> JSONResponse:
        embedding_up = dep.embedder.healthy()
        generation_up = dep.generator.healthy()
        up = embedding_up and generation_up
        body = ProvidersHealthResponse(
            status="UP" if up else "DOWN",
            embedding=ComponentHealthResponse(
                status="UP" if embedding_up else "DOWN",
                detail="available" if embedding_up else "unavailable",
            ),
            generation=ComponentHealthResponse(
                status="UP" if generation_up else "DOWN",
                detail="available" if generation_up else "unavailable",
            ),
        )
        if not up:
            logger.warning("health.providers_down", embedding=embedding_up, generation=generation_up)
        return JSONResponse(
            status_code=status.HTTP_200_OK if up else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(),
        )

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/metrics")
    def metrics(store: KnowledgeStore = Depends(get_store)) -> Response:
        try:
            PipelineMetrics.stored_chunk_count.set(store.count_chunks())
        except Exception as exc:
            logger.warning("metrics.chunk_count_failed", error=str(exc))
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["AppDependencies", "create_app", "resolve_content_type"]

"""Tests for the FastAPI application."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from uuid import uuid4

import chromadb
from fastapi.testclient import TestClient

from wikirag.api.app import AppDependencies, create_app, resolve_content_type
from wikirag.config import Settings
from wikirag.conversations.store import SqlConversationStore
from wikirag.embeddings.service import EmbeddingConfig, HashEmbeddingProvider
from wikirag.embeddings.store import ChromaKnowledgeStore
from wikirag.errors import GenerationError
from wikirag.extraction.service import ExtractorRegistry
from wikirag.ingestion.service import IngestionConfig, IngestionPipeline
from wikirag.retrieval.service import VectorRetriever
from wikirag.services.generation import TemplateGenerationProvider
from wikirag.services.query import QueryPipeline
from wikirag.storage.database import build_engine, build_session_factory

DIM = 16
TEXT = b"Chroma stores the vectors. SQLite stores the rows. Both are needed for search."


class FailingGenerator(TemplateGenerationProvider):
    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        raise GenerationError("model overloaded")


def create_test_client(tmp_path: Path, *, generator=None, **settings_overrides) -> TestClient:
    sessions = build_session_factory(build_engine(f"sqlite:///{tmp_path / 'api.db'}"))
    store = ChromaKnowledgeStore(
        sessions,
        collection_name=f"test-{uuid4().hex}",
        client=chromadb.EphemeralClient(),
        dimension=DIM,
    )
    conversations = SqlConversationStore(sessions)
    embedder = HashEmbeddingProvider(EmbeddingConfig(dim=DIM))
    generator = generator or TemplateGenerationProvider()
    deps = AppDependencies(
        store=store,
        conversations=conversations,
        ingestion=IngestionPipeline(
            store,
            ExtractorRegistry(),
            embedder,
            config=IngestionConfig(chunk_size=200, chunk_overlap=20),
        ),
        query=QueryPipeline(conversations, embedder, VectorRetriever(store), generator),
        embedder=embedder,
        generator=generator,
    )
    settings = Settings(environment="test", **settings_overrides)
    return TestClient(create_app(settings=settings, dependencies=deps))


def _upload(client: TestClient, content: bytes = TEXT, filename: str = "notes.txt", content_type: str = "text/plain"):
    return client.post("/api/documents/upload", files={"file": (filename, BytesIO(content), content_type)})


def test_upload_runs_ingestion_in_background(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)

    response = _upload(client)
    assert response.status_code == 202, response.text
    payload = response.json()
    assert payload["status"] == "PROCESSING"
    assert payload["filename"] == "notes.txt"
    assert response.headers["X-Correlation-ID"]

    document = client.get(f"/api/documents/{payload['id']}").json()
    assert document["status"] == "COMPLETED"
    assert document["metadata"]["chunk_count"] >= 1

    listing = client.get("/api/documents").json()
    assert listing["total"] == 1
    chunks = client.get(f"/api/documents/{payload['id']}/chunks").json()
    assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))


def test_upload_rejections(tmp_path: Path) -> None:
    client = create_test_client(tmp_path, max_upload_size_mb=1)

    assert _upload(client, filename="image.png", content_type="image/png").status_code == 415
    assert _upload(client, content=b"").status_code == 400
    assert _upload(client, content=b"a" * (1024 * 1024 + 1)).status_code == 413
    invalid = client.post(
        "/api/documents/upload",
        files={"file": ("notes.txt", BytesIO(TEXT), "text/plain")},
        data={"chunk_size": "100", "overlap": "100"},
    )
    assert invalid.status_code == 400
    assert client.get("/api/documents").json()["total"] == 0


def test_generic_content_type_falls_back_to_extension(tmp_path: Path) -> None:
    assert resolve_content_type("application/octet-stream", "README.md") == "text/markdown"
    client = create_test_client(tmp_path)
    response = _upload(client, content=b"# Title\n\nBody text.", filename="README.md", content_type="application/octet-stream")
    assert response.status_code == 202, response.text
    assert response.json()["content_type"] == "text/markdown"


def test_chat_history_and_delete(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    _upload(client)

    response = client.post("/api/chat/query", json={"session_id": "s-1", "query": "Where are the vectors stored?"})
    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["answer"]
    assert payload["sources"][0]["filename"] == "notes.txt"

    history = client.get("/api/chat/history/s-1").json()
    assert [m["role"] for m in history["messages"]] == ["USER", "ASSISTANT"]
    assert history["messages"][1]["sources"][0]["chunk_id"] == payload["sources"][0]["chunk_id"]

    assert client.delete("/api/chat/s-1").status_code == 204
    missing = client.get("/api/chat/history/s-1")
    assert missing.status_code == 404
    assert missing.json()["correlation_id"]


def test_chat_validation_and_generation_failure(tmp_path: Path) -> None:
    client = create_test_client(tmp_path, generator=FailingGenerator())

    assert client.post("/api/chat/query", json={"session_id": "s-1", "query": ""}).status_code == 422
    assert client.post("/api/chat/query", json={"session_id": "s-1", "query": "   "}).status_code == 400

    failed = client.post("/api/chat/query", json={"session_id": "s-1", "query": "hello?"})
    assert failed.status_code == 502
    history = client.get("/api/chat/history/s-1").json()
    assert [m["role"] for m in history["messages"]] == ["USER"]


def test_document_not_found_and_delete(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    assert client.get("/api/documents/missing").status_code == 404
    assert client.get("/api/documents/missing/chunks").status_code == 404

    document_id = _upload(client).json()["id"]
    assert client.delete(f"/api/documents/{document_id}").status_code == 204
    assert client.get(f"/api/documents/{document_id}").status_code == 404
    assert client.delete(f"/api/documents/{document_id}").status_code == 404


def test_reprocess_replaces_chunks(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    document_id = _upload(client, content=" ".join(f"w{i}" for i in range(200)).encode()).json()["id"]

    response = client.post(
        f"/api/documents/{document_id}/reprocess",
        files={"file": ("notes.txt", BytesIO(b"short replacement text"), "text/plain")},
    )
    assert response.status_code == 202, response.text
    assert response.json()["status"] == "PROCESSING"
    chunks = client.get(f"/api/documents/{document_id}/chunks").json()
    assert [c["content"] for c in chunks] == ["short replacement text"]
    assert client.get(f"/api/documents/{document_id}").json()["metadata"]["chunk_count"] == 1
    assert client.post(
        "/api/documents/missing/reprocess",
        files={"file": ("notes.txt", BytesIO(b"x"), "text/plain")},
    ).status_code == 404


def test_api_key_guards_mutations(tmp_path: Path) -> None:
    client = create_test_client(tmp_path, api_key="secret")

    assert _upload(client).status_code == 401
    accepted = client.post(
        "/api/documents/upload",
        files={"file": ("notes.txt", BytesIO(TEXT), "text/plain")},
        headers={"X-API-Key": "secret"},
    )
    assert accepted.status_code == 202
    assert client.get("/api/documents").status_code == 200


def test_health_and_metrics(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)

    assert client.get("/api/health").json()["status"] == "UP"
    db = client.get("/api/health/db")
    assert db.status_code == 200
    assert db.json() == {"status": "UP", "detail": "connected"}
    providers = client.get("/api/health/providers").json()
    assert providers["status"] == "UP"
    assert providers["embedding"]["status"] == "UP"
    assert client.get("/livez").json() == {"status": "alive"}

    _upload(client)
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "wikirag_ingestion_duration_seconds" in metrics.text
    assert "wikirag_stored_chunk_count" in metrics.text


def test_create_app_builds_dependencies_from_settings(tmp_path: Path) -> None:
    settings = Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'data' / 'wikirag.db'}",
        chroma_persist_dir=tmp_path / "chroma",
        chroma_collection=f"test-{uuid4().hex}",
        embedding_dim=DIM,
    )
    client = TestClient(create_app(settings=settings))

    document_id = _upload(client).json()["id"]
    assert client.get(f"/api/documents/{document_id}").json()["status"] == "COMPLETED"
    assert (tmp_path / "data" / "wikirag.db").exists()

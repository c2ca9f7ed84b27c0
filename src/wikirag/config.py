"""Runtime configuration for the wikirag services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="wikirag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Relational store (documents, chunks, conversations, messages)
    database_url: str = "sqlite:///./data/wikirag.db"
    database_echo: bool = False

    # Vector index
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "wikirag-chunks"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Embeddings: "hash" is deterministic and offline, "huggingface" loads a
    # sentence-embedding model, "gemini" calls the Gemini REST API.
    embedding_provider: Literal["hash", "huggingface", "gemini"] = "hash"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    embedding_batch_size: int = 100

    generation_provider: Literal["template", "gemini"] = "template"
    generator_model: str = "gemini-2.0-flash"
    generator_temperature: float = 0.7

    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_embedding_model: str = "gemini-embedding-001"

    # Timeouts (seconds) applied to every provider HTTP call
    provider_connect_timeout: float = 5.0
    provider_read_timeout: float = 60.0
    provider_write_timeout: float = 30.0

    chunk_size: int = 2000
    chunk_overlap: int = 200

    retrieval_top_k: int = 5
    retrieval_max_top_k: int = 20
    similarity_threshold: float = 0.0
    history_turns: int = 3

    # Upload safety
    allowed_content_types: tuple[str, ...] | str = (
        "application/pdf",
        "text/plain",
        "text/markdown",
        "text/x-markdown",
        "text/html",
        "application/xhtml+xml",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )
    max_upload_size_mb: int = 50

    # CORS
    cors_allow_origins: tuple[str, ...] = ()  # e.g., ("*") to allow all
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header

    @property
    def allowed_content_types_tuple(self) -> tuple[str, ...]:
        value = self.allowed_content_types
        if isinstance(value, tuple):
            return tuple(v.lower() for v in value)
        if isinstance(value, str):
            parts = [p.strip().lower() for p in value.split(",") if p.strip()]
            return tuple(parts) if parts else ("text/plain",)
        return ("text/plain",)

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()

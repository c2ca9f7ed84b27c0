"""Embedding providers for wikirag."""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence, Tuple

import httpx
from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from wikirag.clients import build_gemini_client
from wikirag.config import Settings
from wikirag.errors import EmbeddingError
from wikirag.metrics.observability import get_logger

Vector = Tuple[float, ...]

LOGGER = get_logger("embeddings")


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding providers."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None
    batch_size: int = 100


class EmbeddingProvider(Protocol):
    """Protocol describing embedding behaviour."""

    def embed(self, text: str) -> Vector:
        """Return the embedding vector for ``text``."""

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        """Return one vector per input text, in input order."""

    def dimension(self) -> int:
        """Return the dimension shared by every vector this provider produces."""

    def healthy(self) -> bool:
        """Return True when the backend answers; never raises."""


def _require_text(text: str, position: int | None = None) -> None:
    if text is None or not text.strip():
        where = "" if position is None else f" at index {position}"
        raise EmbeddingError(f"Text{where} cannot be null or empty")


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(float(value) / norm for value in vector)


class HashEmbeddingProvider:
    """Deterministic lightweight embedding fallback used for testing."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed(self, text: str) -> Vector:
        _require_text(text)
        return self._hash_to_vector(text)

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        for index, text in enumerate(texts):
            _require_text(text, index)
        return [self._hash_to_vector(text) for text in texts]

    def dimension(self) -> int:
        return self._config.dim

    def healthy(self) -> bool:
        return True


class LangChainEmbeddingProvider:
    """Embedding provider delegating to a LangChain ``Embeddings`` client."""

    def __init__(self, client: LangChainEmbeddings, config: EmbeddingConfig | None = None) -> None:
        self._client = client
        self._config = config or EmbeddingConfig()

    @classmethod
    def huggingface(cls, config: EmbeddingConfig) -> "LangChainEmbeddingProvider":
        model_kwargs: dict[str, Any] = {"device": config.device} if config.device else {}
        client = HuggingFaceEmbeddings(
            model_name=config.model,
            model_kwargs=model_kwargs,
            encode_kwargs={"normalize_embeddings": config.normalize},
            cache_folder=config.cache_folder,
        )
        LOGGER.info("embeddings.model_loaded", model=config.model)
        return cls(client, config)

    def embed(self, text: str) -> Vector:
        _require_text(text)
        try:
            vector = self._client.embed_query(text)
        except Exception as exc:
            LOGGER.error("embeddings.query_failed", error=str(exc))
            raise EmbeddingError(f"Failed to generate embedding: {exc}") from exc
        return self._checked(vector)

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        if not texts:
            return []
        for index, text in enumerate(texts):
            _require_text(text, index)
        vectors: list[Vector] = []
        size = max(1, self._config.batch_size)
        try:
            for offset in range(0, len(texts), size):
                batch = list(texts[offset : offset + size])
                produced = self._client.embed_documents(batch)
                if len(produced) != len(batch):
                    raise EmbeddingError(f"Expected {len(batch)} embeddings but got {len(produced)}")
                vectors.extend(self._checked(vector) for vector in produced)
        except EmbeddingError:
            raise
        except Exception as exc:
            LOGGER.error("embeddings.batch_failed", error=str(exc), texts=len(texts))
            raise EmbeddingError(f"Failed to generate batch embeddings: {exc}") from exc
        return vectors

    def dimension(self) -> int:
        return self._config.dim

    def healthy(self) -> bool:
        try:
            return len(self.embed("test")) == self._config.dim
        except Exception as exc:
            LOGGER.warning("embeddings.health_failed", error=str(exc))
            return False

    def _checked(self, vector: Sequence[float]) -> Vector:
        if len(vector) != self._config.dim:
            raise EmbeddingError(
                f"Embedding dim mismatch: configured={self._config.dim}, actual={len(vector)}"
            )
        if self._config.normalize:
            return _normalize(vector)
        return tuple(float(value) for value in vector)


class GeminiEmbeddingProvider:
    """Embedding provider calling the Gemini ``embedContent`` REST endpoints."""

    def __init__(self, client: httpx.Client, config: EmbeddingConfig) -> None:
        self._client = client
        self._config = config

    @property
    def _model_path(self) -> str:
        return f"models/{self._config.model}"

    def _request(self, text: str) -> dict[str, Any]:
        return {
            "model": self._model_path,
            "content": {"parts": [{"text": text}]},
            "outputDimensionality": self._config.dim,
        }

    def embed(self, text: str) -> Vector:
        _require_text(text)
        payload = self._post(f"/{self._model_path}:embedContent", self._request(text))
        try:
            values = payload["embedding"]["values"]
        except (KeyError, TypeError) as exc:
            raise EmbeddingError("Received malformed embedding from Gemini API") from exc
        return self._checked(values)

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        if not texts:
            return []
        for index, text in enumerate(texts):
            _require_text(text, index)
        LOGGER.info("embeddings.batch_start", texts=len(texts), model=self._config.model)
        vectors: list[Vector] = []
        size = max(1, self._config.batch_size)
        for offset in range(0, len(texts), size):
            batch = texts[offset : offset + size]
            payload = self._post(
                f"/{self._model_path}:batchEmbedContents",
                {"requests": [self._request(text) for text in batch]},
            )
            try:
                produced = [item["values"] for item in payload["embeddings"]]
            except (KeyError, TypeError) as exc:
                raise EmbeddingError("Received malformed batch embeddings from Gemini API") from exc
            if len(produced) != len(batch):
                raise EmbeddingError(f"Expected {len(batch)} embeddings but got {len(produced)}")
            vectors.extend(self._checked(values) for values in produced)
        return vectors

    def dimension(self) -> int:
        return self._config.dim

    def healthy(self) -> bool:
        try:
            return len(self.embed("test")) == self._config.dim
        except Exception as exc:
            LOGGER.warning("embeddings.health_failed", error=str(exc))
            return False

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            LOGGER.error("embeddings.timeout", path=path)
            raise EmbeddingError(f"Gemini embedding request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            LOGGER.error("embeddings.http_error", path=path, error=str(exc))
            raise EmbeddingError(f"Failed to generate embedding with Gemini: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingError(f"Gemini returned a non-JSON body: {exc}") from exc

    def _checked(self, values: Sequence[float]) -> Vector:
        if len(values) != self._config.dim:
            raise EmbeddingError(f"Expected embedding dimension {self._config.dim}, got {len(values)}")
        if self._config.normalize:
            return _normalize(values)
        return tuple(float(value) for value in values)


def build_embedding_provider(settings: Settings, *, transport: httpx.BaseTransport | None = None) -> EmbeddingProvider:
    """Select the embedding provider named by ``settings.embedding_provider``."""

    if settings.embedding_provider == "huggingface":
        return LangChainEmbeddingProvider.huggingface(
            EmbeddingConfig(
                model=settings.embedding_model,
                dim=settings.embedding_dim,
                batch_size=settings.embedding_batch_size,
            ),
        )
    if settings.embedding_provider == "gemini":
        return GeminiEmbeddingProvider(
            build_gemini_client(settings, transport=transport),
            EmbeddingConfig(
                model=settings.gemini_embedding_model,
                dim=settings.embedding_dim,
                batch_size=settings.embedding_batch_size,
            ),
        )
    return HashEmbeddingProvider(EmbeddingConfig(dim=settings.embedding_dim))

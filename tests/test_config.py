from __future__ import annotations

from wikirag.config import Settings, get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({"environment": "test"})
    assert settings.embedding_model == "BAAI/bge-small-en-v1.5"
    assert settings.embedding_dim == 384
    assert settings.embedding_provider == "hash"


def test_chunking_and_retrieval_defaults():
    settings = Settings(environment="test")
    assert settings.chunk_size == 2000
    assert settings.chunk_overlap == 200
    assert settings.retrieval_top_k == 5
    assert settings.retrieval_max_top_k >= settings.retrieval_top_k
    assert settings.similarity_threshold == 0.0


def test_upload_limits_defaults():
    settings = Settings(environment="test")
    assert settings.max_upload_size_mb >= 1
    assert settings.max_upload_size_bytes == settings.max_upload_size_mb * 1024 * 1024


def test_allowed_content_types_accepts_comma_separated_string():
    settings = Settings(environment="test", allowed_content_types="Text/Plain, application/pdf ,")
    assert settings.allowed_content_types_tuple == ("text/plain", "application/pdf")


def test_override_does_not_touch_cached_instance():
    cached = get_settings()
    overridden = get_settings({"chunk_size": 500, "environment": "test"})
    assert overridden.chunk_size == 500
    assert overridden.environment == "test"
    assert get_settings() is cached

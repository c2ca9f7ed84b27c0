"""HTTP client construction shared by the network-backed providers."""

from __future__ import annotations

import httpx

from wikirag.config import Settings


def provider_timeout(settings: Settings) -> httpx.Timeout:
    """Connect/read/write bounds for a single provider call."""

    return httpx.Timeout(
        connect=settings.provider_connect_timeout,
        read=settings.provider_read_timeout,
        write=settings.provider_write_timeout,
        pool=settings.provider_connect_timeout,
    )


def build_gemini_client(settings: Settings, *, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    if not settings.gemini_api_key:
        raise ValueError("wikirag_gemini_api_key must be set to use the Gemini providers")
    return httpx.Client(
        base_url=settings.gemini_base_url.rstrip("/"),
        headers={"x-goog-api-key": settings.gemini_api_key, "Content-Type": "application/json"},
        timeout=provider_timeout(settings),
        transport=transport,
    )

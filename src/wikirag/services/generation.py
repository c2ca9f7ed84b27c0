"""Generation backends for wikirag."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from wikirag.clients import build_gemini_client
from wikirag.config import Settings
from wikirag.errors import GenerationError
from wikirag.metrics.observability import get_logger

LOGGER = get_logger("generation")

NO_CONTEXT_ANSWER = "I do not have enough relevant context to answer that question."


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gemini-2.0-flash"
    temperature: float = 0.7


class GenerationProvider(Protocol):
    """Protocol describing generation behaviour."""

    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        """Return the model's answer to ``prompt``."""

    def healthy(self) -> bool:
        """Return True when the backend answers; never raises."""


def _require_prompt(prompt: str) -> None:
    if prompt is None or not prompt.strip():
        raise GenerationError("Prompt cannot be null or empty")


class TemplateGenerationProvider:
    """Simple deterministic generator used for tests and offline environments.

    Answers with the first context block of the prompt, or with a fixed
    message when the prompt carries no context.
    """

    _QUESTION = re.compile(r"^Question: (?P<question>.*)$", re.MULTILINE)
    _FIRST_BLOCK = re.compile(r"^\[1\] \[Document: [^\n]*\]\n(?P<body>.*?)(?:\n\n|\Z)", re.MULTILINE | re.DOTALL)

    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        _require_prompt(prompt)
        block = self._FIRST_BLOCK.search(prompt)
        if block is None:
            return NO_CONTEXT_ANSWER
        questions = self._QUESTION.findall(prompt)
        question = questions[-1].strip() if questions else ""
        return (
            f"Summary: {block.group('body').strip()}\n\n"
            f"Answer: Based on the provided documents, here is the best match for your question '{question}'."
        )

    def healthy(self) -> bool:
        return True


class GeminiGenerationProvider:
    """Generator calling the Gemini ``generateContent`` REST endpoint."""

    def __init__(self, client: httpx.Client, config: GenerationConfig | None = None) -> None:
        self._client = client
        self._config = config or GenerationConfig()

    def generate(self, prompt: str, *, temperature: float | None = None) -> str:
        _require_prompt(prompt)
        effective = self._config.temperature if temperature is None else temperature
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": effective},
        }
        path = f"/models/{self._config.model}:generateContent"
        LOGGER.debug("generation.request", model=self._config.model, prompt_chars=len(prompt), temperature=effective)
        try:
            response = self._client.post(path, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            LOGGER.error("generation.timeout", model=self._config.model)
            raise GenerationError(f"Gemini generation request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            LOGGER.error("generation.http_error", model=self._config.model, error=str(exc))
            raise GenerationError(f"Failed to generate text with Gemini: {exc}") from exc
        except ValueError as exc:
            raise GenerationError(f"Gemini returned a non-JSON body: {exc}") from exc
        text = self._extract_text(payload)
        if not text.strip():
            LOGGER.warning("generation.empty_response", model=self._config.model)
            raise GenerationError("Received empty response from Gemini API")
        return text.strip()

    def healthy(self) -> bool:
        try:
            return bool(self.generate("ping"))
        except Exception as exc:
            LOGGER.warning("generation.health_failed", error=str(exc))
            return False

    @staticmethod
    def _extract_text(payload: Any) -> str:
        try:
            parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return ""
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


def build_generation_provider(
    settings: Settings, *, transport: httpx.BaseTransport | None = None
) -> GenerationProvider:
    if settings.generation_provider == "gemini":
        return GeminiGenerationProvider(
            build_gemini_client(settings, transport=transport),
            GenerationConfig(model=settings.generator_model, temperature=settings.generator_temperature),
        )
    return TemplateGenerationProvider()


__all__ = [
    "GenerationConfig",
    "GenerationProvider",
    "GeminiGenerationProvider",
    "NO_CONTEXT_ANSWER",
    "TemplateGenerationProvider",
    "build_generation_provider",
]

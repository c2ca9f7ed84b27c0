"""Service layer orchestrations for wikirag."""

from .generation import (
    GeminiGenerationProvider,
    GenerationConfig,
    GenerationProvider,
    TemplateGenerationProvider,
    build_generation_provider,
)
from .query import PromptBuilder, PromptBuilderConfig, QueryConfig, QueryPipeline

__all__ = [
    "GeminiGenerationProvider",
    "GenerationConfig",
    "GenerationProvider",
    "PromptBuilder",
    "PromptBuilderConfig",
    "QueryConfig",
    "QueryPipeline",
    "TemplateGenerationProvider",
    "build_generation_provider",
]

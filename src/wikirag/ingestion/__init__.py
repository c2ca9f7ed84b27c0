"""Document ingestion pipeline."""

from .chunker import Chunker, ChunkerConfig
from .service import IngestionConfig, IngestionPipeline

__all__ = ["Chunker", "ChunkerConfig", "IngestionConfig", "IngestionPipeline"]

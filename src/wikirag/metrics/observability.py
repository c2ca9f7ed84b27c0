"""Observability helpers for wikirag."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "wikirag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "wikirag_ingestion_duration_seconds",
        "Time spent ingesting a document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "wikirag_ingestion_chunk_count",
        "Chunks produced per ingested document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    ingestion_outcomes = Counter(
        "wikirag_ingestion_outcomes_total",
        "Terminal document states reached by the ingestion pipeline.",
        ["status"],
    )
    retrieval_latency = Histogram(
        "wikirag_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "wikirag_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13, 21),
    )
    grounding_score = Histogram(
        "wikirag_grounding_score",
        "Cosine similarity of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    generation_latency = Histogram(
        "wikirag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 15.0),
    )
    chat_failures = Counter(
        "wikirag_chat_failures_total",
        "Chat turns aborted, by pipeline stage.",
        ["stage"],
    )
    stored_chunk_count = Gauge(
        "wikirag_stored_chunk_count",
        "Number of chunks currently held by the knowledge store.",
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int, status: str) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)
        cls.ingestion_outcomes.labels(status=status).inc()

    @classmethod
    def record_superseded_run(cls) -> None:
        cls.ingestion_outcomes.labels(status="SUPERSEDED").inc()

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        chunk_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def record_chat_failure(cls, stage: str) -> None:
        cls.chat_failures.labels(stage=stage).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback: Callable[[float], None] | None = None) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        if self._callback is not None and exc_type is None:
            self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]

"""Boundary-aware sliding-window text chunker."""

from __future__ import annotations

import re
from dataclasses import dataclass

from wikirag.errors import InvalidChunkParametersError

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_END = re.compile(r"[.!?][\"')\]]*\s+")


@dataclass(frozen=True)
class ChunkerConfig:
    """Tuning for boundary detection.

    ``lookback_ratio`` is the fraction of ``chunk_size`` at the end of each
    window that is searched for a paragraph or sentence boundary.
    """

    lookback_ratio: float = 0.25


class Chunker:
    """Split text into overlapping segments that prefer natural boundaries.

    Each segment holds at most ``chunk_size`` characters. A segment ends at
    the last paragraph break inside the lookback window, else at the last
    sentence end, else at the hard size limit. The following segment starts
    ``overlap`` characters before that cut, so neighbours share at most
    ``overlap`` characters. Output depends only on the arguments.
    """

    def __init__(self, config: ChunkerConfig | None = None) -> None:
        self._config = config or ChunkerConfig()

    @staticmethod
    def is_valid(chunk_size: int, overlap: int) -> bool:
        return chunk_size > 0 and overlap > 0 and overlap < chunk_size

    def split(self, text: str, chunk_size: int, overlap: int) -> list[str]:
        if not self.is_valid(chunk_size, overlap):
            raise InvalidChunkParametersError(chunk_size, overlap)
        normalized = (text or "").strip()
        if not normalized:
            return []
        if len(normalized) <= chunk_size:
            return [normalized]

        length = len(normalized)
        lookback = max(1, int(chunk_size * self._config.lookback_ratio))
        segments: list[str] = []
        start = 0
        while start < length:
            hard_end = start + chunk_size
            cut = length if hard_end >= length else self._find_cut(normalized, start, hard_end, lookback)
            segment = normalized[start:cut].strip()
            if segment:
                segments.append(segment)
            if cut >= length:
                break
            start = self._next_start(normalized, start, cut, overlap)
        return segments

    @staticmethod
    def _find_cut(text: str, start: int, hard_end: int, lookback: int) -> int:
        window_start = max(start + 1, hard_end - lookback)
        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_END):
            last = None
            for match in pattern.finditer(text, window_start, hard_end):
                last = match
            if last is not None:
                return last.end()
        return hard_end

    @staticmethod
    def _next_start(text: str, start: int, cut: int, overlap: int) -> int:
        candidate = max(cut - overlap, start + 1)
        # Skip a partial leading word when a space sits early in the overlap.
        region = text[candidate:cut]
        match = re.search(r"\s", region)
        if match is not None and match.start() < overlap // 2:
            candidate += match.start() + 1
        return min(candidate, cut)


__all__ = ["Chunker", "ChunkerConfig"]

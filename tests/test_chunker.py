from __future__ import annotations

import pytest

from wikirag.errors import InvalidChunkParametersError
from wikirag.ingestion.chunker import Chunker, ChunkerConfig


def _words(count: int) -> str:
    return " ".join(f"token{i}" for i in range(count))


def _positions(text: str, segments: list[str]) -> list[int]:
    positions: list[int] = []
    cursor = 0
    for segment in segments:
        position = text.find(segment, cursor)
        assert position >= 0, f"segment not found in source: {segment[:40]!r}"
        positions.append(position)
        cursor = position + 1
    return positions


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 0), (100, 100), (100, 150), (-5, 1), (10, -1)])
def test_invalid_parameters_rejected(size, overlap):
    chunker = Chunker()
    assert not Chunker.is_valid(size, overlap)
    with pytest.raises(InvalidChunkParametersError):
        chunker.split("some text", size, overlap)


def test_invalid_parameters_are_value_errors():
    with pytest.raises(ValueError):
        Chunker().split("text", 10, 10)


def test_empty_and_blank_input_yield_no_segments():
    chunker = Chunker()
    assert chunker.split("", 100, 10) == []
    assert chunker.split("   \n\t  ", 100, 10) == []


def test_short_text_is_single_trimmed_segment():
    assert Chunker().split("  hello world  ", 100, 10) == ["hello world"]


def test_segments_respect_size_and_overlap_bounds():
    text = _words(800)
    size, overlap = 300, 50
    segments = Chunker().split(text, size, overlap)

    assert len(segments) > 1
    assert all(len(segment) <= size for segment in segments)
    positions = _positions(text, segments)
    assert positions[0] == 0
    assert positions[-1] + len(segments[-1]) == len(text)
    for (prev_pos, prev), pos in zip(zip(positions, segments), positions[1:]):
        prev_end = prev_pos + len(prev)
        assert prev_end - pos <= overlap
        if pos > prev_end:
            assert text[prev_end:pos].strip() == ""


def test_split_is_deterministic():
    text = _words(500)
    chunker = Chunker()
    assert chunker.split(text, 250, 40) == chunker.split(text, 250, 40)


def test_hard_cut_without_boundaries():
    text = "abcdefghij" * 50
    segments = Chunker().split(text, 100, 10)
    assert segments[0] == text[:100]
    assert segments[1] == text[90:190]
    assert all(len(segment) <= 100 for segment in segments)


def test_prefers_paragraph_break_inside_lookback_window():
    first = ("x" * 9 + " ") * 16  # 160 characters
    second = ("y" * 9 + " ") * 16
    text = first.strip() + "\n\n" + second.strip()
    segments = Chunker().split(text, 200, 20)
    assert segments[0] == first.strip()


def test_prefers_sentence_end_when_no_paragraph_break():
    text = " ".join(f"Sentence number {i} ends here." for i in range(40))
    segments = Chunker(ChunkerConfig(lookback_ratio=0.5)).split(text, 100, 10)
    assert len(segments) > 1
    assert all(segment.endswith(".") for segment in segments)

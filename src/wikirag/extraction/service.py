"""Content extractors turning uploaded bytes into plain text."""

from __future__ import annotations

import io
import re
import unicodedata
from typing import Iterable, Protocol, Sequence

import docx2txt
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import FileNotDecryptedError, PdfReadError

from wikirag.errors import ExtractionError, UnreadableContentError
from wikirag.metrics.observability import get_logger

_logger = get_logger("extraction")


class ContentExtractor(Protocol):
    """Protocol implemented by every extractor variant."""

    def supports(self, content_type: str) -> bool:
        """Return True when this extractor handles ``content_type``."""

    def extract(self, content: bytes, content_type: str) -> str:
        """Return the trimmed plain text contained in ``content``."""


def normalize_content_type(content_type: str | None) -> str:
    """Lower-case a MIME type and drop parameters such as ``charset``."""

    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _normalize_whitespace(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def _decode(content: bytes, content_type: str) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"Content is not valid UTF-8: {exc}", content_type, exc) from exc


class _TypedExtractor:
    supported_types: frozenset[str] = frozenset()

    def supports(self, content_type: str) -> bool:
        return normalize_content_type(content_type) in self.supported_types


class PdfExtractor(_TypedExtractor):
    """Extract text from PDF bytes with pypdf."""

    supported_types = frozenset({"application/pdf"})

    def extract(self, content: bytes, content_type: str) -> str:
        try:
            reader = PdfReader(io.BytesIO(content))
            if reader.is_encrypted:
                _logger.warning("extraction.pdf_encrypted", content_type=content_type)
                raise UnreadableContentError("Cannot parse encrypted PDF without password", content_type)
            pages = reader.pages
            if len(pages) == 0:
                _logger.warning("extraction.pdf_empty")
                return ""
            text = "\n\n".join((page.extract_text() or "") for page in pages)
        except UnreadableContentError:
            raise
        except FileNotDecryptedError as exc:
            raise UnreadableContentError("Cannot parse encrypted PDF without password", content_type, exc) from exc
        except (PdfReadError, OSError, ValueError) as exc:
            raise ExtractionError(f"Failed to read PDF content: {exc}", content_type, exc) from exc
        except Exception as exc:
            raise ExtractionError(f"Failed to parse PDF content: {exc}", content_type, exc) from exc
        return text.strip()


class PlainTextExtractor(_TypedExtractor):
    supported_types = frozenset({"text/plain"})

    def extract(self, content: bytes, content_type: str) -> str:
        return _decode(content, content_type).strip()


class MarkdownExtractor(_TypedExtractor):
    """Render markdown to plain text by removing its markup."""

    supported_types = frozenset({"text/markdown", "text/x-markdown"})

    _FENCE = re.compile(r"^\s*(```|~~~).*$", re.MULTILINE)
    _IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
    _LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
    _HEADING = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
    _BLOCKQUOTE = re.compile(r"^\s{0,3}>\s?", re.MULTILINE)
    _LIST_MARKER = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
    _RULE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$", re.MULTILINE)
    _EMPHASIS = re.compile(r"(?<!\w)(\*\*|__|\*|_|~~)(?=\S)(.+?)(?<=\S)\1(?!\w)")
    _INLINE_CODE = re.compile(r"`([^`]*)`")
    _HTML_TAG = re.compile(r"</?[a-zA-Z][^>]*>")

    def extract(self, content: bytes, content_type: str) -> str:
        source = _decode(content, content_type).replace("\r\n", "\n")
        if not source.strip():
            return ""
        text = self._FENCE.sub("", source)
        text = self._RULE.sub("", text)
        text = self._IMAGE.sub(r"\1", text)
        text = self._LINK.sub(r"\1", text)
        text = self._HEADING.sub("", text)
        text = self._BLOCKQUOTE.sub("", text)
        text = self._LIST_MARKER.sub("", text)
        text = self._INLINE_CODE.sub(r"\1", text)
        text = self._EMPHASIS.sub(r"\2", text)
        text = self._HTML_TAG.sub("", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()


class HtmlExtractor(_TypedExtractor):
    supported_types = frozenset({"text/html", "application/xhtml+xml"})

    def extract(self, content: bytes, content_type: str) -> str:
        try:
            soup = BeautifulSoup(content, "html.parser")
        except Exception as exc:
            raise ExtractionError(f"Failed to parse HTML content: {exc}", content_type, exc) from exc
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        root = soup.body or soup
        return _normalize_whitespace(root.get_text(" "))


class DocxExtractor(_TypedExtractor):
    supported_types = frozenset({"application/vnd.openxmlformats-officedocument.wordprocessingml.document"})

    def extract(self, content: bytes, content_type: str) -> str:
        try:
            text = docx2txt.process(io.BytesIO(content))
        except Exception as exc:
            raise ExtractionError(f"Failed to read DOCX content: {exc}", content_type, exc) from exc
        return (text or "").strip()


class ExtractorRegistry:
    """Dispatches extraction to the first extractor supporting a content type."""

    def __init__(self, extractors: Iterable[ContentExtractor] | None = None) -> None:
        self._extractors: Sequence[ContentExtractor] = list(extractors) if extractors is not None else default_extractors()

    def supports(self, content_type: str | None) -> bool:
        normalized = normalize_content_type(content_type)
        if not normalized:
            return False
        return any(extractor.supports(normalized) for extractor in self._extractors)

    def extractor_for(self, content_type: str | None) -> ContentExtractor:
        normalized = normalize_content_type(content_type)
        if not normalized:
            raise ExtractionError("Content type cannot be null or blank", content_type)
        for extractor in self._extractors:
            if extractor.supports(normalized):
                return extractor
        raise ExtractionError(f"Unsupported content type: {normalized}", normalized)

    def extract(self, content: bytes, content_type: str) -> str:
        extractor = self.extractor_for(content_type)
        normalized = normalize_content_type(content_type)
        try:
            text = extractor.extract(content, normalized)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Unexpected error during extraction: {exc}", normalized, exc) from exc
        _logger.debug("extraction.complete", content_type=normalized, characters=len(text))
        return text.strip()


def default_extractors() -> list[ContentExtractor]:
    return [PdfExtractor(), PlainTextExtractor(), MarkdownExtractor(), HtmlExtractor(), DocxExtractor()]


__all__ = [
    "ContentExtractor",
    "DocxExtractor",
    "ExtractorRegistry",
    "HtmlExtractor",
    "MarkdownExtractor",
    "PdfExtractor",
    "PlainTextExtractor",
    "default_extractors",
    "normalize_content_type",
]

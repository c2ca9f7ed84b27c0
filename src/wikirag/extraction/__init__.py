"""Content extraction for uploaded documents."""

from .service import (
    ContentExtractor,
    DocxExtractor,
    ExtractorRegistry,
    HtmlExtractor,
    MarkdownExtractor,
    PdfExtractor,
    PlainTextExtractor,
    default_extractors,
    normalize_content_type,
)

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

"""Tests for content extraction."""

from __future__ import annotations

import io
import zipfile

import pytest
from pypdf import PdfWriter

from wikirag.errors import ExtractionError, UnreadableContentError
from wikirag.extraction.service import (
    DocxExtractor,
    ExtractorRegistry,
    HtmlExtractor,
    MarkdownExtractor,
    PdfExtractor,
    normalize_content_type,
)

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _pdf_bytes(*, pages: int = 1, password: str | None = None) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    if password:
        writer.encrypt(password)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _docx_bytes(text: str) -> bytes:
    document = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body><w:p><w:r><w:t>{text}</w:t></w:r></w:p></w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("word/document.xml", document)
    return buffer.getvalue()


def test_normalize_content_type_drops_parameters():
    assert normalize_content_type("Text/Plain; charset=UTF-8") == "text/plain"
    assert normalize_content_type(None) == ""


def test_plain_text_is_trimmed():
    registry = ExtractorRegistry()
    assert registry.extract(b"  hello world \n", "text/plain") == "hello world"


def test_invalid_utf8_raises_extraction_error():
    with pytest.raises(ExtractionError):
        ExtractorRegistry().extract(b"\xff\xfe\xfa", "text/plain")


def test_unsupported_and_blank_content_types_rejected():
    registry = ExtractorRegistry()
    assert not registry.supports("image/png")
    assert not registry.supports("  ")
    with pytest.raises(ExtractionError):
        registry.extract(b"data", "image/png")
    with pytest.raises(ExtractionError):
        registry.extract(b"data", "")


def test_markdown_markup_is_removed():
    source = b"# Title\n\nSome **bold** text with a [link](http://example.com) and `code`.\n\n- item one\n- item two\n"
    text = MarkdownExtractor().extract(source, "text/markdown")
    assert "#" not in text
    assert "**" not in text
    assert "http://example.com" not in text
    assert "Title" in text
    assert "Some bold text with a link and code." in text
    assert "item one" in text


def test_markdown_keeps_snake_case_identifiers():
    text = MarkdownExtractor().extract(b"call my_helper_function now", "text/markdown")
    assert text == "call my_helper_function now"


def test_html_drops_scripts_and_collapses_whitespace():
    source = b"<html><head><style>p{}</style></head><body><h1>Hello</h1><script>x()</script><p>world\n\n  again</p></body></html>"
    text = HtmlExtractor().extract(source, "text/html")
    assert text == "Hello world again"


def test_docx_text_extracted():
    text = DocxExtractor().extract(_docx_bytes("Hello docx"), DOCX_TYPE)
    assert "Hello docx" in text


def test_pdf_without_text_yields_empty_string():
    assert PdfExtractor().extract(_pdf_bytes(), "application/pdf") == ""


def test_pdf_with_zero_pages_yields_empty_string():
    assert PdfExtractor().extract(_pdf_bytes(pages=0), "application/pdf") == ""


def test_encrypted_pdf_is_unreadable():
    with pytest.raises(UnreadableContentError):
        ExtractorRegistry().extract(_pdf_bytes(password="secret"), "application/pdf")


def test_corrupt_pdf_raises_extraction_error():
    with pytest.raises(ExtractionError):
        PdfExtractor().extract(b"not a pdf at all", "application/pdf")

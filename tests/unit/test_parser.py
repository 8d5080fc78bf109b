import io

import pytest
from pypdf import PdfWriter

from agent_chat.errors import InvalidDocument, UnsupportedDocumentType
from agent_chat.ingest.parser import ExtractorRegistry


def test_supported_content_types() -> None:
    registry = ExtractorRegistry()

    assert registry.supports("text/plain")
    assert registry.supports("Text/Plain; charset=utf-8")
    assert registry.supports("application/pdf")
    assert not registry.supports("text/csv")
    assert not registry.supports(None)


def test_plain_text_is_decoded_as_utf8() -> None:
    assert ExtractorRegistry().extract("Grüße".encode("utf-8"), "text/plain") == "Grüße"


def test_invalid_utf8_is_decoded_with_replacement() -> None:
    assert ExtractorRegistry().extract(b"caf\xe9 menu", "text/plain") == "caf\ufffd menu"


def test_blank_pdf_yields_no_text() -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)

    assert ExtractorRegistry().extract(buffer.getvalue(), "application/pdf") == ""


def test_unknown_type_is_rejected() -> None:
    with pytest.raises(UnsupportedDocumentType, match="Unsupported file type"):
        ExtractorRegistry().extract(b"<html></html>", "text/html")


def test_corrupt_pdf_is_rejected() -> None:
    with pytest.raises(InvalidDocument, match="Unreadable PDF"):
        ExtractorRegistry().extract(b"not a pdf at all", "application/pdf")

"""Text extraction for uploaded documents, keyed by content type."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from agent_chat.errors import InvalidDocument, UnsupportedDocumentType


class TextExtractor(ABC):
    """Base extractor interface used by the ingest pipeline."""

    content_types: tuple[str, ...] = ()

    @abstractmethod
    def extract(self, data: bytes) -> str:
        """Return the plain text carried by `data`."""


class PlainTextExtractor(TextExtractor):
    content_types = ("text/plain",)

    def extract(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")


class PdfExtractor(TextExtractor):
    content_types = ("application/pdf",)

    def extract(self, data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise InvalidDocument(f"Unreadable PDF: {exc}") from exc
        return "\n\n".join(page.strip() for page in pages if page.strip())


class ExtractorRegistry:
    """Maps content type to extractor implementation."""

    def __init__(self, extractors: list[TextExtractor] | None = None) -> None:
        self._extractors: dict[str, TextExtractor] = {}
        for extractor in extractors or [PlainTextExtractor(), PdfExtractor()]:
            self.register(extractor)

    def register(self, extractor: TextExtractor) -> None:
        for content_type in extractor.content_types:
            self._extractors[content_type.lower()] = extractor

    def supports(self, content_type: str | None) -> bool:
        return _media_type(content_type) in self._extractors

    def extract(self, data: bytes, content_type: str | None) -> str:
        extractor = self._extractors.get(_media_type(content_type))
        if extractor is None:
            raise UnsupportedDocumentType(f"Unsupported file type: {content_type}")
        return extractor.extract(data)


def _media_type(content_type: str | None) -> str:
    # "text/plain; charset=utf-8" -> "text/plain"
    return (content_type or "").split(";", 1)[0].strip().lower()

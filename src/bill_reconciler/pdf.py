"""PDF text extraction."""

from __future__ import annotations

from io import BytesIO
from typing import Protocol

from pypdf import PdfReader

DEFAULT_PAGE_LIMIT = 3


class PdfTextExtractor(Protocol):
    """Protocol for PDF text extractors. Implementations may raise."""

    def extract(self, data: bytes, page_limit: int) -> str: ...


class PypdfTextExtractor:
    """Extract text from the leading pages of a PDF with pypdf."""

    def extract(self, data: bytes, page_limit: int = DEFAULT_PAGE_LIMIT) -> str:
        reader = PdfReader(BytesIO(data))
        texts = [page.extract_text() or "" for page in reader.pages[:page_limit]]
        return "\n".join(texts)

"""Normalize raw messages into bounded plain-text documents."""

from __future__ import annotations

import logging
import re
from html.parser import HTMLParser
from typing import TYPE_CHECKING

from bill_reconciler.models import Document, Err, Ok
from bill_reconciler.pdf import DEFAULT_PAGE_LIMIT

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bill_reconciler.adapters.base import MessageStore
    from bill_reconciler.models import Header, RawMessage
    from bill_reconciler.pdf import PdfTextExtractor

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class MalformedMessageError(ValueError):
    """Raised when a message carries no headers at all."""


def normalize_message(
    message_id: str, store: MessageStore, pdf_extractor: PdfTextExtractor
) -> Document:
    """Fetch a message and reduce it to a Document.

    Errors fetching the message itself propagate. Attachment failures are
    logged and the attachment contributes no text.
    """
    raw = store.get_message(message_id)
    if not raw.headers:
        msg = f"Message {message_id} has no headers"
        raise MalformedMessageError(msg)

    attachment_texts = [
        result.value
        for result in _extract_attachments(raw, store, pdf_extractor)
        if isinstance(result, Ok)
    ]

    return Document(
        id=raw.message_id,
        subject=_header(raw.headers, "Subject"),
        sender=_header(raw.headers, "From"),
        date=_header(raw.headers, "Date"),
        body_text=select_body(raw),
        attachment_text="".join(f"\n\n{text}" for text in attachment_texts),
    )


def normalize_messages(
    message_ids: Iterable[str],
    store: MessageStore,
    pdf_extractor: PdfTextExtractor,
) -> list[Ok[Document] | Err]:
    """Normalize each message, recording fetch failures in place.

    MalformedMessageError is not caught.
    """
    results: list[Ok[Document] | Err] = []
    for message_id in message_ids:
        try:
            results.append(Ok(normalize_message(message_id, store, pdf_extractor)))
        except MalformedMessageError:
            raise
        except Exception as exc:
            logger.warning("Failed to fetch message %s", message_id, exc_info=True)
            results.append(Err(exc, key=message_id))
    return results


def select_body(raw: RawMessage) -> str:
    """Pick the body text: inline payload, then text/plain, then text/html."""
    if raw.body:
        return raw.body

    plain = next((p for p in raw.parts if p.mime_type == "text/plain"), None)
    if plain is not None and plain.text:
        return plain.text

    html = next((p for p in raw.parts if p.mime_type == "text/html"), None)
    if html is not None and html.text:
        return strip_html(html.text)

    return ""


def strip_html(html: str) -> str:
    """Remove HTML tags and collapse whitespace runs to single spaces."""
    stripper = _HTMLTagStripper()
    stripper.feed(html)
    stripper.close()
    return _WHITESPACE.sub(" ", stripper.get_text())


def _header(headers: list[Header], name: str) -> str:
    return next((h.value for h in headers if h.name == name), "")


def _extract_attachments(
    raw: RawMessage, store: MessageStore, pdf_extractor: PdfTextExtractor
) -> list[Ok[str] | Err]:
    results: list[Ok[str] | Err] = []
    for part in raw.parts:
        if part.mime_type != "application/pdf" or not part.attachment_id:
            continue
        try:
            data = store.get_attachment(raw.message_id, part.attachment_id)
            text = pdf_extractor.extract(data, DEFAULT_PAGE_LIMIT)
        except Exception as exc:
            logger.warning(
                "Failed to extract PDF %s from message %s",
                part.filename or part.attachment_id,
                raw.message_id,
                exc_info=True,
            )
            results.append(Err(exc, key=part.attachment_id))
            continue
        results.append(Ok(text))
    return results


class _HTMLTagStripper(HTMLParser):
    """HTMLParser subclass that replaces tags with spaces."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._parts.append(" ")

    def handle_endtag(self, tag: str) -> None:
        self._parts.append(" ")

    def handle_data(self, data: str) -> None:
        self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)

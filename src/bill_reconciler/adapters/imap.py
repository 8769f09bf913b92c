"""IMAP message store."""

from __future__ import annotations

import imaplib
import logging
from email import message_from_bytes
from email.header import decode_header
from typing import TYPE_CHECKING, cast

from bill_reconciler.models import Header, MessagePart, RawMessage

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from datetime import date
    from email.message import Message
    from types import TracebackType

    from bill_reconciler.config import ImapConfig

logger = logging.getLogger(__name__)

_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip


class ImapMessageStore:
    """Read messages and attachments from an IMAP mailbox.

    Use as a context manager: the connection is opened on enter and
    logged out on exit. Message ids are IMAP UIDs, which survive expunges
    and reconnects as long as the folder's UIDVALIDITY is unchanged.
    """

    def __init__(self, config: ImapConfig) -> None:
        self.config = config
        self._conn: imaplib.IMAP4_SSL | None = None
        self._cache: dict[str, Message] = {}

    def __enter__(self) -> ImapMessageStore:
        self._conn = self._connect()
        self._conn.select(self.config.folder, readonly=True)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        conn, self._conn = self._conn, None
        self._cache.clear()
        if conn is not None:
            try:
                conn.logout()
            except Exception:
                logger.debug("Error during IMAP logout", exc_info=True)

    def list_message_ids(
        self, subjects: Sequence[str], since: date | None, limit: int
    ) -> list[str]:
        """Return the newest ``limit`` message ids matching the search."""
        conn = self._require_connection()
        criteria = build_search_criteria(subjects, since)
        _status, data = conn.uid("SEARCH", None, criteria)
        raw = data[0]
        if not raw:
            return []
        ids = [msg_id.decode() for msg_id in cast("list[bytes]", raw.split())]
        return ids[-limit:] if limit > 0 else ids

    def get_message(self, message_id: str) -> RawMessage:
        """Fetch a message and convert it to a RawMessage."""
        msg = self._load(message_id)
        headers = [
            Header(name=name, value=self._decode_header_value(str(value)))
            for name, value in msg.items()
        ]
        body, parts = self._extract_body_and_parts(msg)
        return RawMessage(
            message_id=message_id, headers=headers, body=body, parts=parts
        )

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Return the decoded payload of an attachment part."""
        msg = self._load(message_id)
        for part_id, part in self._leaf_parts(msg):
            if part_id == attachment_id:
                payload = part.get_payload(decode=True)
                if payload is None:
                    break
                return cast("bytes", payload)
        msg_text = f"Attachment {attachment_id} not found in message {message_id}"
        raise KeyError(msg_text)

    def _connect(self) -> imaplib.IMAP4_SSL:
        """Establish an IMAP4_SSL connection and authenticate."""
        conn = imaplib.IMAP4_SSL(self.config.host, self.config.port)
        conn.login(self.config.username, self.config.password)
        return conn

    def _require_connection(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            msg = "ImapMessageStore must be used as a context manager"
            raise RuntimeError(msg)
        return self._conn

    def _load(self, message_id: str) -> Message:
        """Fetch a message by UID, caching the parsed result."""
        cached = self._cache.get(message_id)
        if cached is not None:
            return cached

        conn = self._require_connection()
        _status, data = conn.uid("FETCH", message_id, "(RFC822)")
        if not data or data[0] is None or not isinstance(data[0], tuple):
            msg_text = f"Message {message_id} could not be fetched"
            raise LookupError(msg_text)

        msg = message_from_bytes(data[0][1])
        self._cache[message_id] = msg
        return msg

    @staticmethod
    def _decode_header_value(value: str | None) -> str:
        """Decode an RFC 2047 encoded header value."""
        if not value:
            return ""
        parts = decode_header(value)
        decoded_parts: list[str] = []
        for data, charset in parts:
            if isinstance(data, bytes):
                decoded_parts.append(data.decode(charset or "utf-8", errors="replace"))
            else:
                decoded_parts.append(data)
        return "".join(decoded_parts)

    @staticmethod
    def _leaf_parts(msg: Message) -> Iterator[tuple[str, Message]]:
        """Yield (part id, part) for every non-container MIME part."""
        index = 0
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            yield f"part-{index}", part
            index += 1

    @classmethod
    def _extract_body_and_parts(
        cls, msg: Message
    ) -> tuple[str | None, list[MessagePart]]:
        """Split a message into an inline body or a list of leaf parts."""
        if not msg.is_multipart():
            raw_payload = msg.get_payload(decode=True)
            if raw_payload is None:
                return None, []
            charset = msg.get_content_charset() or "utf-8"
            return cast("bytes", raw_payload).decode(charset, errors="replace"), []

        parts: list[MessagePart] = []
        for part_id, part in cls._leaf_parts(msg):
            content_type = part.get_content_type()
            disposition = str(part.get("Content-Disposition", ""))
            filename = part.get_filename()

            if filename or "attachment" in disposition.lower():
                parts.append(
                    MessagePart(
                        mime_type=content_type,
                        attachment_id=part_id,
                        filename=filename,
                    )
                )
                continue

            text: str | None = None
            if part.get_content_maintype() == "text":
                raw_payload = part.get_payload(decode=True)
                if raw_payload is not None:
                    charset = part.get_content_charset() or "utf-8"
                    text = cast("bytes", raw_payload).decode(charset, errors="replace")
            parts.append(MessagePart(mime_type=content_type, text=text))

        return None, parts


def build_search_criteria(subjects: Sequence[str], since: date | None) -> str:
    """Build an IMAP SEARCH string matching any subject keyword.

    IMAP's OR is binary, so n keywords nest as OR a (OR b c).
    """
    terms: list[str] = []
    if subjects:
        subject_terms = [f'SUBJECT "{_quote(s)}"' for s in subjects]
        expr = subject_terms[-1]
        for term in reversed(subject_terms[:-1]):
            expr = f"OR {term} {expr}"
        terms.append(f"({expr})" if len(subject_terms) > 1 else expr)
    if since is not None:
        terms.append(f"SINCE {since.day:02d}-{_MONTHS[since.month - 1]}-{since.year}")
    return " ".join(terms) or "ALL"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')

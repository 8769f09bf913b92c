"""Shared test fixtures."""

from __future__ import annotations

import pytest

from bill_reconciler.config import ImapConfig
from bill_reconciler.models import Document, Header, MessagePart, RawMessage


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="test@example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
        folder="INBOX",
    )


@pytest.fixture
def sample_document() -> Document:
    """Provide a minimal bill Document for oracle tests."""
    return Document(
        id="msg-1",
        subject="Your AGL electricity bill",
        sender="billing@agl.com.au",
        date="Mon, 13 Jan 2025 09:00:00 +1100",
        body_text="Amount due: $120.50\nDue date: 28 January 2025",
    )


@pytest.fixture
def sample_message() -> RawMessage:
    """Provide a multipart message with a plain body and a PDF attachment."""
    return RawMessage(
        message_id="msg-1",
        headers=[
            Header("Subject", "Your bill"),
            Header("From", "billing@example.com"),
            Header("Date", "Mon, 13 Jan 2025 09:00:00 +1100"),
        ],
        parts=[
            MessagePart(mime_type="text/plain", text="Plain body"),
            MessagePart(mime_type="text/html", text="<p>HTML body</p>"),
            MessagePart(
                mime_type="application/pdf",
                attachment_id="part-2",
                filename="bill.pdf",
            ),
        ],
    )

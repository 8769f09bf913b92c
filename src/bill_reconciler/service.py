"""Bill and statement workflows: mailbox -> documents -> oracle -> matches."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, date, datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING

from bill_reconciler.matching import (
    AUTO_PAY_CONFIDENCE,
    match_transactions,
    settling_matches,
)
from bill_reconciler.models import Document, Ok, StatementResult
from bill_reconciler.normalizer import normalize_messages
from bill_reconciler.oracle import (
    bill_or_none,
    extract_bill,
    extract_statement,
    transactions_or_empty,
)
from bill_reconciler.pdf import DEFAULT_PAGE_LIMIT
from bill_reconciler.pipeline import run_batch
from bill_reconciler.store import transaction_key

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bill_reconciler.adapters.base import MessageStore
    from bill_reconciler.models import Bill, BillRecord, Match
    from bill_reconciler.oracle import ExtractionOracle
    from bill_reconciler.pdf import PdfTextExtractor
    from bill_reconciler.store import BillStore

logger = logging.getLogger(__name__)

BILL_SUBJECTS = ("bill", "invoice", "payment", "due", "statement")
STATEMENT_SUBJECTS = ("statement", "transaction", "account summary")

UPLOAD_SENDER = "PDF Upload"
PDF_MAGIC = b"%PDF-"


class InvalidPdfError(ValueError):
    """Raised when uploaded bytes are not a readable PDF."""


def collect_documents(
    store: MessageStore,
    pdf_extractor: PdfTextExtractor,
    subjects: Sequence[str],
    *,
    days: int,
    limit: int,
    today: date | None = None,
) -> list[Document]:
    """Search the mailbox and normalize every message that can be fetched."""
    since = (today or date.today()) - timedelta(days=days)
    message_ids = store.list_message_ids(subjects, since, limit)
    logger.info("Found %d candidate messages", len(message_ids))

    results = normalize_messages(message_ids, store, pdf_extractor)
    return [result.value for result in results if isinstance(result, Ok)]


async def analyze_bills(
    documents: Sequence[Document],
    oracle: ExtractionOracle,
    *,
    concurrency: int,
    timeout: float | None = None,
) -> list[BillRecord]:
    """Extract bills from documents, keeping only confident bill records."""
    outcomes = await run_batch(
        documents, partial(extract_bill, oracle=oracle), concurrency, timeout=timeout
    )
    _log_outcomes("bill", outcomes)

    accepted: list[BillRecord] = []
    for outcome in outcomes:
        record = bill_or_none(outcome)
        if record is not None and record.is_accepted:
            accepted.append(record)
    logger.info("Accepted %d bills from %d documents", len(accepted), len(documents))
    return accepted


async def analyze_statements(
    documents: Sequence[Document],
    oracle: ExtractionOracle,
    *,
    concurrency: int,
    timeout: float | None = None,
) -> list[StatementResult]:
    """Extract transactions from statement documents, one result per document."""
    outcomes = await run_batch(
        documents,
        partial(extract_statement, oracle=oracle),
        concurrency,
        timeout=timeout,
    )
    _log_outcomes("statement", outcomes)
    return [
        StatementResult(document=document, transactions=transactions_or_empty(outcome))
        for document, outcome in zip(documents, outcomes)
    ]


def reconcile(
    results: Sequence[StatementResult],
    bills: Sequence[Bill],
    *,
    exclusive: bool = False,
) -> list[Match]:
    """Match every extracted transaction against the given bills."""
    transactions = [tx for result in results for tx in result.transactions]
    matches = match_transactions(transactions, bills, exclusive=exclusive)
    logger.info(
        "Matched %d of %d transactions against %d bills",
        len(matches),
        len(transactions),
        len(bills),
    )
    return matches


def settle_bills(
    store: BillStore,
    user_id: str,
    results: Sequence[StatementResult],
    matches: Sequence[Match],
    *,
    min_confidence: int = AUTO_PAY_CONFIDENCE,
) -> list[str]:
    """Mark bills paid by confident matches. Returns the ids marked paid."""
    document_ids = {
        tx: result.document.id for result in results for tx in result.transactions
    }
    paid: list[str] = []
    for match in settling_matches(matches, min_confidence):
        tx = match.transaction
        tx_id = transaction_key(document_ids[tx], tx)
        if store.mark_paid(user_id, match.bill_id, tx.date, tx_id):
            paid.append(match.bill_id)
    logger.info("Marked %d bills paid for %s", len(paid), user_id)
    return paid


def document_from_pdf(
    filename: str,
    data: bytes,
    pdf_extractor: PdfTextExtractor,
    *,
    now: datetime | None = None,
) -> Document:
    """Build a statement Document from an uploaded PDF file."""
    if not data.startswith(PDF_MAGIC):
        msg = f"{filename} is not a PDF file"
        raise InvalidPdfError(msg)

    try:
        text = pdf_extractor.extract(data, DEFAULT_PAGE_LIMIT)
    except Exception as exc:
        msg = f"Could not read {filename}: {exc}"
        raise InvalidPdfError(msg) from exc
    if not text.strip():
        msg = f"Could not extract text from {filename}"
        raise InvalidPdfError(msg)

    received = now or datetime.now(UTC)
    return Document(
        id=f"upload_{int(received.timestamp() * 1000)}",
        subject=filename,
        sender=UPLOAD_SENDER,
        date=received.isoformat(),
        body_text="",
        attachment_text=text,
    )


def _log_outcomes(kind: str, outcomes: Sequence[object]) -> None:
    counts = Counter(type(outcome).__name__ for outcome in outcomes)
    logger.info("%s extraction outcomes: %s", kind, dict(counts))

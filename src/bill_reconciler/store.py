"""Bill and transaction persistence."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import psycopg
from psycopg.rows import dict_row

from bill_reconciler.config import get_database_url
from bill_reconciler.models import Bill, BillStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from bill_reconciler.models import BillRecord, Match, StatementResult, Transaction

logger = logging.getLogger(__name__)

TRANSACTION_LIST_LIMIT = 100

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS bills (
    user_id TEXT NOT NULL,
    id TEXT NOT NULL,
    company TEXT,
    amount NUMERIC,
    currency TEXT,
    due_date DATE,
    bill_type TEXT,
    status TEXT NOT NULL,
    confidence INTEGER NOT NULL,
    paid_date DATE,
    matched_transaction_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (user_id, id)
);
CREATE TABLE IF NOT EXISTS transactions (
    user_id TEXT NOT NULL,
    id TEXT NOT NULL,
    source_document_id TEXT NOT NULL,
    date DATE NOT NULL,
    description TEXT NOT NULL,
    amount NUMERIC NOT NULL,
    type TEXT NOT NULL,
    matched_bill_id TEXT,
    match_confidence INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (user_id, id)
);
"""

_UPSERT_BILL = """\
INSERT INTO bills
    (user_id, id, company, amount, currency, due_date, bill_type, status, confidence)
VALUES
    (%(user_id)s, %(id)s, %(company)s, %(amount)s, %(currency)s, %(due_date)s,
     %(bill_type)s, %(status)s, %(confidence)s)
ON CONFLICT (user_id, id) DO UPDATE SET
    company = EXCLUDED.company,
    amount = EXCLUDED.amount,
    currency = EXCLUDED.currency,
    due_date = EXCLUDED.due_date,
    bill_type = EXCLUDED.bill_type,
    confidence = EXCLUDED.confidence,
    updated_at = now()
"""

_UPSERT_TRANSACTION = """\
INSERT INTO transactions
    (user_id, id, source_document_id, date, description, amount, type,
     matched_bill_id, match_confidence)
VALUES
    (%(user_id)s, %(id)s, %(source_document_id)s, %(date)s, %(description)s,
     %(amount)s, %(type)s, %(matched_bill_id)s, %(match_confidence)s)
ON CONFLICT (user_id, id) DO UPDATE SET
    matched_bill_id = EXCLUDED.matched_bill_id,
    match_confidence = EXCLUDED.match_confidence
"""

_CURRENT_BILLS = """\
SELECT id, company, amount, due_date, status
FROM bills
WHERE user_id = %s AND status <> 'paid'
ORDER BY due_date ASC NULLS LAST, id
"""

_SET_STATUS = """\
UPDATE bills SET status = %s, updated_at = now()
WHERE user_id = %s AND id = %s
"""

_MARK_PAID = """\
UPDATE bills
SET status = 'paid', paid_date = %s, matched_transaction_id = %s, updated_at = now()
WHERE user_id = %s AND id = %s
"""

_LIST_BILLS = """\
SELECT id, company, amount, currency, due_date, bill_type, status, confidence,
       paid_date, matched_transaction_id
FROM bills
WHERE user_id = %s
ORDER BY due_date ASC NULLS LAST, id
"""

_LIST_TRANSACTIONS = """\
SELECT id, source_document_id, date, description, amount, type,
       matched_bill_id, match_confidence
FROM transactions
WHERE user_id = %s
ORDER BY date DESC, id
LIMIT %s
"""


class BillStore(Protocol):
    """Protocol for bill/transaction storage backends."""

    def current_bills(self, user_id: str) -> list[Bill]: ...

    def save_bills(self, user_id: str, records: Iterable[BillRecord]) -> int: ...

    def save_transactions(
        self,
        user_id: str,
        results: Iterable[StatementResult],
        matches: Iterable[Match],
    ) -> int: ...

    def set_bill_status(self, user_id: str, bill_id: str, status: str) -> None: ...

    def mark_paid(
        self, user_id: str, bill_id: str, paid_date: date, transaction_id: str
    ) -> bool: ...

    def list_bills(self, user_id: str) -> list[dict[str, Any]]: ...

    def list_transactions(
        self, user_id: str, limit: int = TRANSACTION_LIST_LIMIT
    ) -> list[dict[str, Any]]: ...


def get_connection() -> psycopg.Connection[dict[str, Any]]:
    """Create and return a new database connection."""
    return psycopg.connect(get_database_url(), row_factory=dict_row)


def transaction_key(document_id: str, transaction: Transaction) -> str:
    """Stable id for a transaction: source document, date and amount."""
    return f"{document_id}_{transaction.date.isoformat()}_{transaction.amount}"


class PostgresBillStore:
    """PostgreSQL implementation of BillStore."""

    def __init__(self, conn: psycopg.Connection[dict[str, Any]]) -> None:
        self.conn = conn

    def ensure_schema(self) -> None:
        """Create the bills and transactions tables if missing."""
        with self.conn.cursor() as cur:
            cur.execute(_SCHEMA)
        self.conn.commit()

    def current_bills(self, user_id: str) -> list[Bill]:
        """Return the user's bills that are not marked paid."""
        with self.conn.cursor() as cur:
            cur.execute(_CURRENT_BILLS, (user_id,))
            rows = cur.fetchall()
        return [Bill.model_validate(row) for row in rows]

    def save_bills(self, user_id: str, records: Iterable[BillRecord]) -> int:
        """Upsert bill records, keeping any status already stored."""
        params = [
            {
                "user_id": user_id,
                "id": record.source_document_id,
                "company": record.company,
                "amount": record.amount,
                "currency": record.currency,
                "due_date": record.due_date,
                "bill_type": record.bill_type.value if record.bill_type else None,
                "status": record.status.value,
                "confidence": record.confidence,
            }
            for record in records
        ]
        if not params:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(_UPSERT_BILL, params)
        self.conn.commit()
        logger.info("Saved %d bills for %s", len(params), user_id)
        return len(params)

    def save_transactions(
        self,
        user_id: str,
        results: Iterable[StatementResult],
        matches: Iterable[Match],
    ) -> int:
        """Upsert statement transactions along with their matched bill."""
        by_transaction = {match.transaction: match for match in matches}
        params = []
        for result in results:
            for tx in result.transactions:
                match = by_transaction.get(tx)
                params.append(
                    {
                        "user_id": user_id,
                        "id": transaction_key(result.document.id, tx),
                        "source_document_id": result.document.id,
                        "date": tx.date,
                        "description": tx.description,
                        "amount": tx.amount,
                        "type": tx.type.value,
                        "matched_bill_id": match.bill_id if match else None,
                        "match_confidence": match.confidence if match else None,
                    }
                )
        if not params:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(_UPSERT_TRANSACTION, params)
        self.conn.commit()
        logger.info("Saved %d transactions for %s", len(params), user_id)
        return len(params)

    def set_bill_status(self, user_id: str, bill_id: str, status: str) -> None:
        """Mark a bill paid or unpaid."""
        if status not in (BillStatus.PAID.value, BillStatus.UNPAID.value):
            msg = f"Invalid status {status!r}, expected 'paid' or 'unpaid'"
            raise ValueError(msg)
        with self.conn.cursor() as cur:
            cur.execute(_SET_STATUS, (status, user_id, bill_id))
            updated = cur.rowcount
        if updated == 0:
            self.conn.rollback()
            msg = f"Bill {bill_id} not found"
            raise LookupError(msg)
        self.conn.commit()

    def mark_paid(
        self, user_id: str, bill_id: str, paid_date: date, transaction_id: str
    ) -> bool:
        """Mark a bill paid by a transaction. Returns False if no such bill."""
        with self.conn.cursor() as cur:
            cur.execute(_MARK_PAID, (paid_date, transaction_id, user_id, bill_id))
            updated = cur.rowcount
        self.conn.commit()
        if updated == 0:
            logger.warning("Cannot mark missing bill %s paid for %s", bill_id, user_id)
            return False
        return True

    def list_bills(self, user_id: str) -> list[dict[str, Any]]:
        """Return all of the user's bills, soonest due first."""
        with self.conn.cursor() as cur:
            cur.execute(_LIST_BILLS, (user_id,))
            return list(cur.fetchall())

    def list_transactions(
        self, user_id: str, limit: int = TRANSACTION_LIST_LIMIT
    ) -> list[dict[str, Any]]:
        """Return the user's newest transactions."""
        with self.conn.cursor() as cur:
            cur.execute(_LIST_TRANSACTIONS, (user_id, limit))
            return list(cur.fetchall())

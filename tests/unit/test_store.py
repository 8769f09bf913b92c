"""Tests for bill_reconciler.store."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from bill_reconciler.models import (
    Bill,
    BillRecord,
    Document,
    Match,
    StatementResult,
    Transaction,
    TransactionType,
)
from bill_reconciler.store import PostgresBillStore, get_connection, transaction_key


def _mock_conn() -> tuple[MagicMock, MagicMock]:
    """Return a mock connection and the cursor its context manager yields."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


def _tx(amount: str, description: str = "AGL") -> Transaction:
    return Transaction(
        date=date(2025, 1, 20),
        description=description,
        amount=Decimal(amount),
        type=TransactionType.DEBIT,
    )


class TestTransactionKey:
    """Tests for transaction_key."""

    def test_combines_document_date_and_amount(self) -> None:
        assert transaction_key("doc-9", _tx("120.50")) == "doc-9_2025-01-20_120.50"


class TestGetConnection:
    """Tests for get_connection."""

    @patch("bill_reconciler.store.psycopg.connect")
    def test_connects_with_dict_rows(
        self, mock_connect: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/bills")

        conn = get_connection()

        assert conn is mock_connect.return_value
        args, kwargs = mock_connect.call_args
        assert args == ("postgresql://localhost/bills",)
        assert "row_factory" in kwargs


class TestPostgresBillStore:
    """Tests for PostgresBillStore."""

    def test_ensure_schema(self) -> None:
        conn, cursor = _mock_conn()

        PostgresBillStore(conn).ensure_schema()

        sql = cursor.execute.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS bills" in sql
        assert "CREATE TABLE IF NOT EXISTS transactions" in sql
        conn.commit.assert_called_once()

    def test_current_bills_validates_rows(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchall.return_value = [
            {
                "id": "msg-1",
                "company": "AGL",
                "amount": Decimal("120.50"),
                "due_date": date(2025, 1, 28),
                "status": "unpaid",
            },
            {
                "id": "msg-2",
                "company": None,
                "amount": None,
                "due_date": None,
                "status": "unknown",
            },
        ]

        bills = PostgresBillStore(conn).current_bills("alice")

        assert bills == [
            Bill(
                id="msg-1",
                company="AGL",
                amount=Decimal("120.50"),
                due_date=date(2025, 1, 28),
                status="unpaid",
            ),
            Bill(id="msg-2", status="unknown"),
        ]
        sql, params = cursor.execute.call_args.args
        assert "status <> 'paid'" in sql
        assert params == ("alice",)

    def test_save_bills(self) -> None:
        conn, cursor = _mock_conn()
        record = BillRecord.model_validate(
            {
                "source_document_id": "msg-1",
                "isBill": True,
                "company": "AGL",
                "amount": "120.50",
                "currency": "AUD",
                "dueDate": "2025-01-28",
                "billType": "electricity",
                "confidence": 95,
            }
        )

        saved = PostgresBillStore(conn).save_bills("alice", [record])

        assert saved == 1
        sql, params = cursor.executemany.call_args.args
        assert "ON CONFLICT (user_id, id) DO UPDATE" in sql
        assert "status = EXCLUDED.status" not in sql
        assert params == [
            {
                "user_id": "alice",
                "id": "msg-1",
                "company": "AGL",
                "amount": Decimal("120.50"),
                "currency": "AUD",
                "due_date": date(2025, 1, 28),
                "bill_type": "electricity",
                "status": "unknown",
                "confidence": 95,
            }
        ]
        conn.commit.assert_called_once()

    def test_save_no_bills_skips_database(self) -> None:
        conn, cursor = _mock_conn()

        assert PostgresBillStore(conn).save_bills("alice", []) == 0
        cursor.executemany.assert_not_called()
        conn.commit.assert_not_called()

    def test_save_transactions_with_matches(self) -> None:
        conn, cursor = _mock_conn()
        matched = _tx("120.50")
        unmatched = _tx("9.99", description="Coffee")
        document = Document(
            id="stmt-1", subject="", sender="", date="", body_text=""
        )
        result = StatementResult(document=document, transactions=[matched, unmatched])
        match = Match(
            transaction=matched,
            bill_id="msg-1",
            bill_company="AGL",
            bill_amount=Decimal("120.50"),
            bill_due_date=date(2025, 1, 28),
            confidence=92,
        )

        saved = PostgresBillStore(conn).save_transactions("alice", [result], [match])

        assert saved == 2
        _sql, params = cursor.executemany.call_args.args
        assert params[0]["id"] == "stmt-1_2025-01-20_120.50"
        assert params[0]["type"] == "debit"
        assert params[0]["matched_bill_id"] == "msg-1"
        assert params[0]["match_confidence"] == 92
        assert params[1]["description"] == "Coffee"
        assert params[1]["matched_bill_id"] is None
        assert params[1]["match_confidence"] is None
        conn.commit.assert_called_once()

    @pytest.mark.parametrize("status", ["paid", "unpaid"])
    def test_set_bill_status(self, status: str) -> None:
        conn, cursor = _mock_conn()
        cursor.rowcount = 1

        PostgresBillStore(conn).set_bill_status("alice", "msg-1", status)

        assert cursor.execute.call_args.args[1] == (status, "alice", "msg-1")
        conn.commit.assert_called_once()

    def test_set_bill_status_rejects_unknown(self) -> None:
        conn, cursor = _mock_conn()

        with pytest.raises(ValueError, match="Invalid status"):
            PostgresBillStore(conn).set_bill_status("alice", "msg-1", "unknown")

        cursor.execute.assert_not_called()

    def test_set_bill_status_missing_bill(self) -> None:
        conn, cursor = _mock_conn()
        cursor.rowcount = 0

        with pytest.raises(LookupError, match="Bill msg-404 not found"):
            PostgresBillStore(conn).set_bill_status("alice", "msg-404", "paid")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_mark_paid_records_payment(self) -> None:
        conn, cursor = _mock_conn()
        cursor.rowcount = 1

        updated = PostgresBillStore(conn).mark_paid(
            "alice", "msg-1", date(2025, 1, 20), "stmt-1_2025-01-20_120.50"
        )

        assert updated is True
        sql, params = cursor.execute.call_args.args
        assert "status = 'paid'" in sql
        assert "paid_date" in sql
        assert "matched_transaction_id" in sql
        assert params == (
            date(2025, 1, 20),
            "stmt-1_2025-01-20_120.50",
            "alice",
            "msg-1",
        )
        conn.commit.assert_called_once()

    def test_mark_paid_missing_bill(self) -> None:
        conn, cursor = _mock_conn()
        cursor.rowcount = 0

        updated = PostgresBillStore(conn).mark_paid(
            "alice", "gone", date(2025, 1, 20), "tx"
        )

        assert updated is False

    def test_schema_has_payment_columns(self) -> None:
        conn, cursor = _mock_conn()

        PostgresBillStore(conn).ensure_schema()

        sql = cursor.execute.call_args.args[0]
        assert "paid_date DATE" in sql
        assert "matched_transaction_id TEXT" in sql

    def test_list_bills_ordered_by_due_date(self) -> None:
        conn, cursor = _mock_conn()
        rows = [{"id": "msg-1", "status": "paid"}, {"id": "msg-2", "status": "unpaid"}]
        cursor.fetchall.return_value = rows

        result = PostgresBillStore(conn).list_bills("alice")

        assert result == rows
        sql, params = cursor.execute.call_args.args
        assert "ORDER BY due_date ASC" in sql
        assert "status <> 'paid'" not in sql
        assert params == ("alice",)

    def test_list_transactions_newest_first(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchall.return_value = []

        assert PostgresBillStore(conn).list_transactions("alice") == []

        sql, params = cursor.execute.call_args.args
        assert "ORDER BY date DESC" in sql
        assert params == ("alice", 100)

    def test_list_transactions_custom_limit(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchall.return_value = []

        PostgresBillStore(conn).list_transactions("alice", limit=5)

        assert cursor.execute.call_args.args[1] == ("alice", 5)

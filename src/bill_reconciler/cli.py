"""CLI entry point for bill-reconciler."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from pydantic import TypeAdapter, ValidationError

from bill_reconciler.adapters.imap import ImapMessageStore
from bill_reconciler.config import (
    get_batch_timeout,
    get_bill_concurrency,
    get_database_url,
    get_exclusive_matching,
    get_imap_config,
    get_statement_concurrency,
)
from bill_reconciler.matching import match_transactions
from bill_reconciler.models import Bill, Transaction
from bill_reconciler.oracle import BILL_MAX_TOKENS, STATEMENT_MAX_TOKENS, create_oracle
from bill_reconciler.pdf import PypdfTextExtractor
from bill_reconciler.service import (
    BILL_SUBJECTS,
    STATEMENT_SUBJECTS,
    analyze_bills,
    analyze_statements,
    collect_documents,
    document_from_pdf,
    reconcile,
    settle_bills,
)
from bill_reconciler.store import (
    TRANSACTION_LIST_LIMIT,
    PostgresBillStore,
    get_connection,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic import BaseModel

    from bill_reconciler.models import StatementResult

_TRANSACTIONS = TypeAdapter(list[Transaction])
_BILLS = TypeAdapter(list[Bill])


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Bill Reconciler: find bills in your inbox and match your payments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--days", default=30, show_default=True, help="Look back this many days.")
@click.option("--limit", default=10, show_default=True, help="Maximum messages.")
@click.option("--save", is_flag=True, help="Persist accepted bills.")
@click.option("--user", default="default", show_default=True, help="Bill owner.")
def bills(days: int, limit: int, save: bool, user: str) -> None:
    """Extract bills from recent mailbox messages."""
    try:
        imap_config = get_imap_config()
        concurrency = get_bill_concurrency()
        timeout = get_batch_timeout()
        if save:
            get_database_url()
        oracle = create_oracle(BILL_MAX_TOKENS)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    with ImapMessageStore(imap_config) as mailbox:
        documents = collect_documents(
            mailbox, PypdfTextExtractor(), BILL_SUBJECTS, days=days, limit=limit
        )

    records = asyncio.run(
        analyze_bills(documents, oracle, concurrency=concurrency, timeout=timeout)
    )
    _echo_models(records)

    if save:
        with get_connection() as conn:
            store = PostgresBillStore(conn)
            store.ensure_schema()
            store.save_bills(user, records)


@cli.command()
@click.option("--days", default=60, show_default=True, help="Look back this many days.")
@click.option("--limit", default=20, show_default=True, help="Maximum messages.")
@click.option("--save", is_flag=True, help="Persist transactions and matches.")
@click.option("--user", default="default", show_default=True, help="Bill owner.")
@click.option("--exclusive", is_flag=True, help="Match each bill at most once.")
def statements(days: int, limit: int, save: bool, user: str, exclusive: bool) -> None:
    """Extract statement transactions and match them to stored bills."""
    try:
        imap_config = get_imap_config()
        concurrency = get_statement_concurrency()
        timeout = get_batch_timeout()
        exclusive = exclusive or get_exclusive_matching()
        get_database_url()
        oracle = create_oracle(STATEMENT_MAX_TOKENS)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    with ImapMessageStore(imap_config) as mailbox:
        documents = collect_documents(
            mailbox, PypdfTextExtractor(), STATEMENT_SUBJECTS, days=days, limit=limit
        )
    if not documents:
        click.echo("No statement emails found.", err=True)
        return

    results = asyncio.run(
        analyze_statements(documents, oracle, concurrency=concurrency, timeout=timeout)
    )
    _reconcile_and_store(results, user=user, save=save, exclusive=exclusive)


@cli.command("statements-file")
@click.argument("pdf_file", type=click.Path(exists=True, path_type=Path))
@click.option("--save", is_flag=True, help="Persist transactions and matches.")
@click.option("--user", default="default", show_default=True, help="Bill owner.")
@click.option("--exclusive", is_flag=True, help="Match each bill at most once.")
def statements_file(pdf_file: Path, save: bool, user: str, exclusive: bool) -> None:
    """Extract transactions from a statement PDF and match them to stored bills."""
    try:
        document = document_from_pdf(
            pdf_file.name, pdf_file.read_bytes(), PypdfTextExtractor()
        )
        exclusive = exclusive or get_exclusive_matching()
        get_database_url()
        oracle = create_oracle(STATEMENT_MAX_TOKENS)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    results = asyncio.run(analyze_statements([document], oracle, concurrency=1))
    if not results[0].transactions:
        click.echo("No transactions found in PDF.", err=True)
        return
    _reconcile_and_store(results, user=user, save=save, exclusive=exclusive)


@cli.command()
@click.argument("transactions_file", type=click.Path(exists=True, path_type=Path))
@click.argument("bills_file", type=click.Path(exists=True, path_type=Path))
@click.option("--exclusive", is_flag=True, help="Match each bill at most once.")
def match(transactions_file: Path, bills_file: Path, exclusive: bool) -> None:
    """Match transactions to bills from two JSON files."""
    try:
        transactions = _TRANSACTIONS.validate_json(transactions_file.read_bytes())
        bill_list = _BILLS.validate_json(bills_file.read_bytes())
    except ValidationError as exc:
        raise click.ClickException(f"Invalid input: {exc}") from exc

    _echo_models(match_transactions(transactions, bill_list, exclusive=exclusive))


@cli.command()
@click.argument("bill_id")
@click.argument("status", type=click.Choice(["paid", "unpaid"]))
@click.option("--user", default="default", show_default=True, help="Bill owner.")
def status(bill_id: str, status: str, user: str) -> None:
    """Mark a stored bill as paid or unpaid."""
    try:
        with get_connection() as conn:
            PostgresBillStore(conn).set_bill_status(user, bill_id, status)
    except (ValueError, LookupError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Bill {bill_id} marked {status}.")


@cli.command("list-bills")
@click.option("--user", default="default", show_default=True, help="Bill owner.")
def list_bills(user: str) -> None:
    """Print stored bills, soonest due first."""
    try:
        with get_connection() as conn:
            rows = PostgresBillStore(conn).list_bills(user)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_rows(rows)


@cli.command("list-transactions")
@click.option("--user", default="default", show_default=True, help="Bill owner.")
@click.option(
    "--limit",
    default=TRANSACTION_LIST_LIMIT,
    show_default=True,
    help="Maximum transactions.",
)
def list_transactions(user: str, limit: int) -> None:
    """Print stored transactions, newest first."""
    try:
        with get_connection() as conn:
            rows = PostgresBillStore(conn).list_transactions(user, limit)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_rows(rows)


def _reconcile_and_store(
    results: list[StatementResult], *, user: str, save: bool, exclusive: bool
) -> None:
    with get_connection() as conn:
        store = PostgresBillStore(conn)
        store.ensure_schema()
        matches = reconcile(results, store.current_bills(user), exclusive=exclusive)
        if save:
            store.save_transactions(user, results, matches)
            settle_bills(store, user, results, matches)

    _echo_models(matches)


def _echo_models(models: Iterable[BaseModel]) -> None:
    for model in models:
        click.echo(json.dumps(model.model_dump(mode="json")))


def _echo_rows(rows: Iterable[dict[str, Any]]) -> None:
    for row in rows:
        click.echo(json.dumps(row, default=str))

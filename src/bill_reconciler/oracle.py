"""LLM-backed structured extraction of bills and statement transactions.

The LLM answers in free-form text that is expected to contain JSON. Every
call is reduced to one of three outcomes so callers never handle untyped
payloads:

- ``Parsed(value)``: a JSON span was found and validated
- ``Unparseable(raw)``: the answer held no usable JSON
- ``Failed(cause)``: the call itself raised (network, quota, timeout)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, Union

from pydantic import ValidationError
from pydantic_ai import Agent

from bill_reconciler.config import get_anthropic_api_key, get_llm_model
from bill_reconciler.models import BillRecord, Transaction

if TYPE_CHECKING:
    from bill_reconciler.models import Document

logger = logging.getLogger(__name__)

T = TypeVar("T")

BILL_MAX_TOKENS = 256
STATEMENT_MAX_TOKENS = 4096

_SYSTEM_PROMPT = """\
You extract structured financial data from emails and their attachments. \
Answer with JSON only, without markdown fences or commentary.\
"""

_BILL_INSTRUCTIONS = """\
Extract bill information from this email.

JSON schema:
{
  "isBill": boolean,
  "company": "string or null",
  "amount": number or null,
  "currency": "AUD/USD/etc or null",
  "dueDate": "YYYY-MM-DD or null",
  "billType": "electricity/internet/phone/insurance/subscription/other/null",
  "status": "paid/unpaid/unknown",
  "confidence": 0-100
}\
"""

_STATEMENT_INSTRUCTIONS = """\
Extract all transactions from this bank statement email. Return a JSON array \
where each transaction has:
{
  "date": "YYYY-MM-DD",
  "description": "merchant/payee name",
  "amount": number (positive value),
  "type": "debit" or "credit"
}

If this is not a bank statement or contains no transactions, return an empty \
array []. Only include actual transactions, not headers or totals.\
"""


class ExtractionOracle(Protocol):
    """Anything that turns a prompt into a text answer."""

    async def complete(self, prompt: str) -> str: ...


class AgentOracle:
    """ExtractionOracle backed by a pydantic-ai Agent."""

    def __init__(self, agent: Agent[None, str]) -> None:
        self.agent = agent

    async def complete(self, prompt: str) -> str:
        result: Any = await self.agent.run(prompt)
        return str(result.output)


def create_oracle(max_tokens: int = BILL_MAX_TOKENS) -> AgentOracle:
    """Create an AgentOracle configured from the environment."""
    # Ensure API key is available (fail fast)
    get_anthropic_api_key()

    model_name = get_llm_model()
    agent: Agent[None, str] = Agent(
        f"anthropic:{model_name}",
        system_prompt=_SYSTEM_PROMPT,
        model_settings={"temperature": 0.0, "max_tokens": max_tokens},
    )
    return AgentOracle(agent)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Unparseable:
    raw: str


@dataclass(frozen=True)
class Failed:
    cause: Exception


OracleOutcome = Union[Parsed[T], Unparseable, Failed]


async def extract_bill(
    document: Document, oracle: ExtractionOracle
) -> OracleOutcome[BillRecord]:
    """Ask the oracle for bill information about a document."""
    try:
        answer = await oracle.complete(build_prompt(document, _BILL_INSTRUCTIONS))
    except Exception as exc:
        logger.warning("Bill extraction failed for %s", document.id, exc_info=True)
        return Failed(exc)

    payload = _load_json_span(answer, "{", "}")
    if not isinstance(payload, dict):
        logger.warning("No bill JSON in oracle answer for %s", document.id)
        return Unparseable(answer)

    try:
        record = BillRecord.model_validate(payload)
    except ValidationError:
        logger.warning("Invalid bill JSON for %s", document.id, exc_info=True)
        return Unparseable(answer)

    return Parsed(record.model_copy(update={"source_document_id": document.id}))


async def extract_statement(
    document: Document, oracle: ExtractionOracle
) -> OracleOutcome[list[Transaction]]:
    """Ask the oracle for the transactions listed in a statement document."""
    try:
        answer = await oracle.complete(build_prompt(document, _STATEMENT_INSTRUCTIONS))
    except Exception as exc:
        logger.warning("Statement extraction failed for %s", document.id, exc_info=True)
        return Failed(exc)

    payload = _load_json_span(answer, "[", "]")
    if not isinstance(payload, list):
        logger.warning("No transaction array in oracle answer for %s", document.id)
        return Unparseable(answer)

    transactions = [tx for tx in map(_to_transaction, payload) if tx is not None]
    if len(transactions) < len(payload):
        logger.debug(
            "Dropped %d invalid transactions from %s",
            len(payload) - len(transactions),
            document.id,
        )
    return Parsed(transactions)


async def extract_transactions(
    document: Document, oracle: ExtractionOracle
) -> list[Transaction]:
    """Like extract_statement, but any failure yields an empty list."""
    return transactions_or_empty(await extract_statement(document, oracle))


def bill_or_none(outcome: OracleOutcome[BillRecord]) -> BillRecord | None:
    if isinstance(outcome, Parsed):
        return outcome.value
    return None


def transactions_or_empty(
    outcome: OracleOutcome[list[Transaction]],
) -> list[Transaction]:
    if isinstance(outcome, Parsed):
        return outcome.value
    return []


def build_prompt(document: Document, instructions: str) -> str:
    """Build the user prompt from a document and schema instructions."""
    parts = [
        instructions,
        "",
        f"From: {document.sender}",
        f"Subject: {document.subject}",
        f"Date: {document.date}",
        f"Content: {document.full_content or '(no content)'}",
    ]
    return "\n".join(parts)


def find_json_span(text: str, opener: str, closer: str) -> str | None:
    """Return the first balanced ``opener ... closer`` span in text.

    Brackets inside JSON string literals are ignored. Returns None when
    the opener is absent or never closed.
    """
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _load_json_span(text: str, opener: str, closer: str) -> Any:
    span = find_json_span(text, opener, closer)
    if span is None:
        return None
    try:
        return json.loads(span, parse_float=Decimal)
    except json.JSONDecodeError:
        return None


def _to_transaction(item: Any) -> Transaction | None:
    """Validate one oracle transaction object, returning None to drop it."""
    if not isinstance(item, dict):
        return None
    tx_date = item.get("date")
    description = item.get("description")
    amount = item.get("amount")
    tx_type = item.get("type")

    if not isinstance(tx_date, str) or not tx_date:
        return None
    if not isinstance(description, str) or not description:
        return None
    if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
        return None
    if amount <= 0:
        return None
    if tx_type not in ("debit", "credit"):
        return None

    try:
        return Transaction(
            date=tx_date, description=description, amount=amount, type=tx_type
        )
    except ValidationError:
        return None

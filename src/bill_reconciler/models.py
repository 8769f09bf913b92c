"""Domain and extraction models for bill reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_CONTENT_CHARS = 5000

T = TypeVar("T")


@dataclass(frozen=True)
class Header:
    """A single message header."""

    name: str
    value: str


@dataclass(frozen=True)
class MessagePart:
    """One leaf MIME part of a message.

    Text parts carry their decoded ``text``; attachments carry an
    ``attachment_id`` that the message store can resolve to bytes.
    """

    mime_type: str
    text: str | None = None
    attachment_id: str | None = None
    filename: str | None = None


@dataclass
class RawMessage:
    """Raw message data from a message store."""

    message_id: str
    headers: list[Header] = field(default_factory=list)
    body: str | None = None
    parts: list[MessagePart] = field(default_factory=list)


@dataclass(frozen=True)
class Document:
    """Normalized plain-text view of a message."""

    id: str
    subject: str
    sender: str
    date: str
    body_text: str
    attachment_text: str = ""

    @property
    def full_content(self) -> str:
        """Body followed by attachment text, cut to MAX_CONTENT_CHARS."""
        return (self.body_text + self.attachment_text)[:MAX_CONTENT_CHARS]


@dataclass(frozen=True)
class Ok(Generic[T]):
    """A unit of work that produced a value."""

    value: T


@dataclass(frozen=True)
class Err:
    """A unit of work that failed; ``key`` identifies the unit."""

    error: Exception
    key: str = ""


class BillType(str, Enum):
    ELECTRICITY = "electricity"
    INTERNET = "internet"
    PHONE = "phone"
    INSURANCE = "insurance"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


class BillStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    UNKNOWN = "unknown"


class TransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


def _null_to_none(value: Any) -> Any:
    """LLMs sometimes spell a missing value as the string "null"."""
    if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
        return None
    return value


class BillRecord(BaseModel):
    """Structured bill information extracted from a document by the LLM."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source_document_id: str = ""
    is_bill: bool = Field(alias="isBill")
    company: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None
    due_date: date | None = Field(default=None, alias="dueDate")
    bill_type: BillType | None = Field(default=None, alias="billType")
    status: BillStatus = BillStatus.UNKNOWN
    confidence: int = Field(ge=0, le=100)

    @field_validator("company", "amount", "currency", "due_date", mode="before")
    @classmethod
    def _nullable(cls, value: Any) -> Any:
        return _null_to_none(value)

    @field_validator("bill_type", mode="before")
    @classmethod
    def _bill_type(cls, value: Any) -> Any:
        value = _null_to_none(value)
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> Any:
        value = _null_to_none(value)
        if value is None:
            return BillStatus.UNKNOWN
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def is_accepted(self) -> bool:
        """Whether the record is confident enough to be treated as a bill."""
        return self.is_bill and self.confidence > 50


class Transaction(BaseModel):
    """A single bank statement transaction."""

    model_config = ConfigDict(frozen=True)

    date: date
    description: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    type: TransactionType


@dataclass
class StatementResult:
    """Transactions extracted from one statement document."""

    document: Document
    transactions: list[Transaction] = field(default_factory=list)


class Bill(BaseModel):
    """The view of a bill the matcher works with."""

    model_config = ConfigDict(frozen=True)

    id: str
    company: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    due_date: date | None = None
    status: str = BillStatus.UNKNOWN.value

    @classmethod
    def from_record(cls, record: BillRecord) -> Bill:
        """Build a matcher bill from an extracted record."""
        return cls(
            id=record.source_document_id,
            company=record.company,
            amount=record.amount,
            due_date=record.due_date,
            status=record.status.value,
        )


class Match(BaseModel):
    """A transaction paired with the bill it most likely pays."""

    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    bill_id: str
    bill_company: str | None
    bill_amount: Decimal | None
    bill_due_date: date | None
    confidence: int = Field(ge=0, le=100)

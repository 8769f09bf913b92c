"""Match bank transactions to outstanding bills.

Each debit transaction is scored against every unpaid bill with an amount.
The score is the sum of three components:

- amount: 0.5 within 2%, 0.3 within 5%, otherwise the bill is ruled out
- date: 0.3 from 7 days before to 14 days after the due date,
  0.15 from 14 days before to 30 days after
- name: 0.2 scaled by how well the description matches the company

The best bill scoring at least 0.5 is reported, with the score as a
0-100 confidence.
A match with confidence 70 or more is strong enough to mark its bill paid.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from bill_reconciler.models import BillStatus, Match, TransactionType

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from bill_reconciler.models import Bill, Transaction

logger = logging.getLogger(__name__)

MIN_MATCH_SCORE = Decimal("0.5")

AMOUNT_CLOSE_TOLERANCE = Decimal("0.02")
AMOUNT_NEAR_TOLERANCE = Decimal("0.05")
AMOUNT_CLOSE_SCORE = Decimal("0.5")
AMOUNT_NEAR_SCORE = Decimal("0.3")

DATE_CLOSE_WINDOW = (-7, 14)
DATE_NEAR_WINDOW = (-14, 30)
DATE_CLOSE_SCORE = Decimal("0.3")
DATE_NEAR_SCORE = Decimal("0.15")

NAME_WEIGHT = Decimal("0.2")
CATEGORY_SIMILARITY = Decimal("0.8")

AUTO_PAY_CONFIDENCE = 70

# Bill company fragment -> statement descriptor keywords. Order matters,
# the first matching category wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "electricity": ("agl", "origin", "energy", "ausgrid"),
    "internet": ("optus", "telstra", "nbn", "tpg", "iinet"),
    "phone": ("optus", "telstra", "vodafone", "amaysim"),
    "insurance": ("nrma", "allianz", "qbe", "suncorp"),
    "netflix": ("netflix",),
    "spotify": ("spotify",),
    "amazon": ("amzn", "amazon", "aws"),
}


def match_transactions(
    transactions: Iterable[Transaction],
    bills: Iterable[Bill],
    *,
    exclusive: bool = False,
) -> list[Match]:
    """Pair each debit transaction with its best-scoring unpaid bill.

    By default a bill stays available after being matched, so several
    transactions may match the same bill. With ``exclusive`` a bill is
    removed from the pool once matched.
    """
    pool = [bill for bill in bills if bill.status != BillStatus.PAID.value]
    matches: list[Match] = []

    for tx in transactions:
        if tx.type != TransactionType.DEBIT:
            continue
        match = find_best_match(tx, pool)
        if match is None:
            continue
        matches.append(match)
        if exclusive:
            pool = [bill for bill in pool if bill.id != match.bill_id]

    return matches


def find_best_match(transaction: Transaction, bills: Sequence[Bill]) -> Match | None:
    """Return the highest-scoring bill match, first bill winning ties."""
    best: Match | None = None
    best_score = Decimal(0)

    for bill in bills:
        if not bill.amount:
            continue
        score = score_match(transaction, bill)
        if score > best_score and score >= MIN_MATCH_SCORE:
            best_score = score
            best = Match(
                transaction=transaction,
                bill_id=bill.id,
                bill_company=bill.company,
                bill_amount=bill.amount,
                bill_due_date=bill.due_date,
                confidence=to_confidence(score),
            )

    if best is not None:
        logger.debug(
            "Matched %s %s to bill %s (%d%%)",
            transaction.date,
            transaction.description,
            best.bill_id,
            best.confidence,
        )
    return best


def score_match(transaction: Transaction, bill: Bill) -> Decimal:
    """Composite score in [0, 1]; 0 when the amounts are too far apart."""
    if not bill.amount:
        return Decimal(0)

    amount = amount_score(transaction.amount, bill.amount)
    if amount is None:
        return Decimal(0)

    score = amount
    if bill.due_date is not None:
        days = (transaction.date - bill.due_date).days
        score += date_score(days)
    if bill.company:
        similarity = name_similarity(transaction.description, bill.company)
        score += similarity * NAME_WEIGHT
    return score


def amount_score(tx_amount: Decimal, bill_amount: Decimal) -> Decimal | None:
    """Score the relative amount difference, None if it disqualifies."""
    diff = abs(tx_amount - bill_amount) / bill_amount
    if diff <= AMOUNT_CLOSE_TOLERANCE:
        return AMOUNT_CLOSE_SCORE
    if diff <= AMOUNT_NEAR_TOLERANCE:
        return AMOUNT_NEAR_SCORE
    return None


def date_score(days: int) -> Decimal:
    """Score a signed day offset of a payment relative to the due date."""
    low, high = DATE_CLOSE_WINDOW
    if low <= days <= high:
        return DATE_CLOSE_SCORE
    low, high = DATE_NEAR_WINDOW
    if low <= days <= high:
        return DATE_NEAR_SCORE
    return Decimal(0)


def name_similarity(description: str, company: str) -> Decimal:
    """Similarity in [0, 1] between a statement descriptor and a company."""
    description = description.lower()
    company = company.lower()

    if company in description:
        return Decimal(1)

    for category, keywords in CATEGORY_KEYWORDS.items():
        if category in company and any(kw in description for kw in keywords):
            return CATEGORY_SIMILARITY

    words = [word for word in company.split() if len(word) > 2]
    if not words:
        return Decimal(0)
    found = sum(1 for word in words if word in description)
    return Decimal(found) / Decimal(len(words))


def to_confidence(score: Decimal) -> int:
    """Convert a score to a 0-100 integer, rounding halves up."""
    return int((score * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def settling_matches(
    matches: Iterable[Match], min_confidence: int = AUTO_PAY_CONFIDENCE
) -> list[Match]:
    """Return the matches that mark their bill paid, at most one per bill."""
    settled: dict[str, Match] = {}
    for match in matches:
        if match.confidence >= min_confidence and match.bill_id not in settled:
            settled[match.bill_id] = match
    return list(settled.values())

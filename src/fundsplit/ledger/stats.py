"""Spending statistics derived from a fund's transactions."""

from collections import defaultdict
from collections.abc import Iterable
from datetime import tzinfo

from ..models import MemberId, Transaction


def transaction_volume(transaction: Transaction) -> int:
    """Money that changed hands in one transaction: the sum of positive splits."""
    return sum(split.amount for split in transaction.splits if split.amount > 0)


def total_expense(transactions: Iterable[Transaction]) -> int:
    """Total volume across transactions."""
    return sum(transaction_volume(tx) for tx in transactions)


def daily_expenses(
    transactions: Iterable[Transaction], tz: tzinfo | None = None
) -> dict[str, dict[str, int]]:
    """
    Group transaction volume by calendar day.

    Uses the transaction's ``date`` when set, otherwise ``created_at``.

    Returns:
        {"YYYY-MM-DD": {"expense": int, "count": int}} sorted by day
    """
    days: dict[str, dict[str, int]] = defaultdict(lambda: {"expense": 0, "count": 0})
    for tx in transactions:
        when = tx.date or tx.created_at
        if tz is not None:
            when = when.astimezone(tz)
        entry = days[when.date().isoformat()]
        entry["expense"] += transaction_volume(tx)
        entry["count"] += 1
    return dict(sorted(days.items()))


def member_spending(transactions: Iterable[Transaction]) -> dict[MemberId, int]:
    """What each member consumed: the magnitude of their negative splits."""
    spending: dict[MemberId, int] = defaultdict(int)
    for tx in transactions:
        for split in tx.splits:
            if split.amount < 0:
                spending[split.member_id] += -split.amount
    return dict(spending)

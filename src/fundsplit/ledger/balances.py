"""Balance engine: net positions per member and settlement suggestions."""

import logging
from collections.abc import Iterable, Mapping
from functools import reduce
from itertools import chain

from ..exceptions import UnbalancedLedgerError
from ..models import (
    Balance,
    KnownMember,
    Member,
    MemberId,
    ResolvedMember,
    Split,
    TransactionDraft,
    Transfer,
    UnknownMember,
)

logger = logging.getLogger(__name__)


def _apply_split(balances: dict[MemberId, int], split: Split) -> dict[MemberId, int]:
    """Fold step: add one split to the running balances."""
    balances[split.member_id] = balances.get(split.member_id, 0) + split.amount
    return balances


def compute_balances(
    transactions: Iterable[TransactionDraft], members: Iterable[MemberId]
) -> dict[MemberId, int]:
    """
    Compute every member's net balance across a fund's transactions.

    This is a fold over every split of every transaction: each roster member
    starts at 0 and each split amount is added to its member. The accumulator
    is built here and never escapes until the fold is done, so callers get a
    fresh dict and the inputs are untouched. Addition is commutative, so the
    result does not depend on transaction order.

    Splits for ids outside the roster are summed as extra keys rather than
    rejected; rejecting bad input is the validator's job.

    Args:
        transactions: All transactions of one fund (unfiltered)
        members: The fund's member roster

    Returns:
        Member id -> signed balance. Sums to zero for valid transactions.
    """
    initial = {member: 0 for member in members}
    splits = chain.from_iterable(transaction.splits for transaction in transactions)
    return reduce(_apply_split, splits, initial)


def balances_as_records(balances: Mapping[MemberId, int]) -> list[Balance]:
    """Balance records, highest balance first (member id breaks ties)."""
    return [
        Balance(member_id=member, amount=amount)
        for member, amount in sorted(balances.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def simplify_debts(balances: Mapping[MemberId, int]) -> list[Transfer]:
    """
    Greedy debt simplification.

    Debtors are sorted most-negative first and creditors most-positive first
    (member id breaks ties). The heads of both lists are paired and
    ``min(debt, credit)`` is transferred; whichever side reaches zero advances.

    Guarantees:
    - at most (members with a nonzero balance - 1) transfers
    - each member's transfers add up to their balance magnitude
    - every transfer amount is positive

    Args:
        balances: Member id -> signed balance (must sum to zero)

    Returns:
        Transfers that bring every balance to zero

    Raises:
        UnbalancedLedgerError: If the balances don't net to zero
    """
    residual = sum(balances.values())
    if residual != 0:
        raise UnbalancedLedgerError(residual)

    debtors = sorted(
        ([member, -amount] for member, amount in balances.items() if amount < 0),
        key=lambda entry: (-entry[1], entry[0]),
    )
    creditors = sorted(
        ([member, amount] for member, amount in balances.items() if amount > 0),
        key=lambda entry: (-entry[1], entry[0]),
    )

    transfers: list[Transfer] = []
    i, j = 0, 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])

        transfers.append(
            Transfer(from_member=debtor[0], to_member=creditor[0], amount=amount)
        )

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            i += 1
        if creditor[1] == 0:
            j += 1

    logger.debug(f"Simplified {len(debtors)} debtors into {len(transfers)} transfers")
    return transfers


def resolve_member(
    member_id: MemberId, directory: Mapping[MemberId, Member]
) -> ResolvedMember:
    """
    Look up a member record.

    Missing records are returned as ``UnknownMember`` so callers have to
    handle them explicitly instead of receiving a made-up member.
    """
    member = directory.get(member_id)
    if member is None:
        logger.warning(f"No member record for id {member_id}")
        return UnknownMember(id=member_id)
    return KnownMember(member=member)

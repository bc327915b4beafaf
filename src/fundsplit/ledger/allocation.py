"""Split allocation strategies for turning a transaction total into signed splits."""

import logging
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..exceptions import AllocationError
from ..models import MemberId, ParsedTransaction, Split

logger = logging.getLogger(__name__)

# Step used when nudging a custom split up or down
CUSTOM_SPLIT_STEP = 10_000


def round_half_up(amount: Decimal) -> int:
    """
    Round a Decimal to an integer amount.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Amount as Decimal

    Returns:
        Amount as integer
    """
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_total(splits: Iterable[Split]) -> int:
    """Sum of all split amounts. Zero for a balanced transaction."""
    return sum(split.amount for split in splits)


def _net_splits(
    total_amount: int, payer: MemberId, shares: Mapping[MemberId, int]
) -> list[Split]:
    """
    Combine what each member consumed with what the payer fronted.

    Each member owes their share (negative), the payer is credited the total.
    Member order follows ``shares``; a payer without a share is appended.
    """
    splits = [Split(member_id=member, amount=-share) for member, share in shares.items()]
    for split in splits:
        if split.member_id == payer:
            split.amount += total_amount
            break
    else:
        splits.append(Split(member_id=payer, amount=total_amount))
    return splits


def allocate_even(
    total_amount: int, payer: MemberId, participants: list[MemberId]
) -> list[Split]:
    """
    Split a total evenly between participants.

    Every participant owes ``floor(total / len(participants))`` and the payer
    is credited the total. The division remainder is absorbed by the payer:
    their split is reduced by the remainder so the splits sum to exactly zero.

    Args:
        total_amount: Total paid, in minor units (must be positive)
        payer: Member who fronted the money
        participants: Members who consumed; may or may not include the payer

    Returns:
        Splits summing to zero

    Raises:
        AllocationError: If the total is not positive or nobody participates
    """
    if total_amount <= 0:
        raise AllocationError(f"Total amount must be positive, got {total_amount}")

    # dict.fromkeys keeps first-seen order and drops duplicates
    members = list(dict.fromkeys(participants))
    if not members:
        raise AllocationError("Even split needs at least one participant")

    share, remainder = divmod(total_amount, len(members))
    splits = _net_splits(total_amount, payer, {member: share for member in members})

    if remainder:
        payer_split = next(s for s in splits if s.member_id == payer)
        payer_split.amount -= remainder
        logger.info(f"Assigned even-split remainder of {remainder} to payer {payer}")

    assert split_total(splits) == 0, "Even split is not balanced"
    return splits


def allocate_percentage(
    total_amount: int,
    payer: MemberId,
    percentages: Mapping[MemberId, Decimal | int | str],
) -> list[Split]:
    """
    Split a total by percentage.

    Steps:
    1. Compute each member's share with ROUND_HALF_UP
    2. Compute residual = total - sum(shares)
    3. Adjust the largest share by the residual (first one on ties)
    4. Credit the payer with the total

    Args:
        total_amount: Total paid, in minor units (must be positive)
        payer: Member who fronted the money
        percentages: Member -> percentage of the total; must sum to 100

    Returns:
        Splits summing to zero

    Raises:
        AllocationError: If percentages are invalid or don't sum to 100
    """
    if total_amount <= 0:
        raise AllocationError(f"Total amount must be positive, got {total_amount}")
    if not percentages:
        raise AllocationError("Percentage split needs at least one member")

    try:
        pcts = {member: Decimal(str(pct)) for member, pct in percentages.items()}
    except InvalidOperation as e:
        raise AllocationError(f"Invalid percentage value: {e}") from e

    if not all(pct.is_finite() for pct in pcts.values()):
        raise AllocationError("Percentages must be finite numbers")
    if any(pct < 0 for pct in pcts.values()):
        raise AllocationError("Percentages cannot be negative")

    pct_sum = sum(pcts.values(), Decimal("0"))
    if pct_sum != Decimal("100"):
        raise AllocationError(f"Percentages must sum to 100, got {pct_sum}")

    # Step 1: each share independently
    total = Decimal(total_amount)
    shares = {
        member: round_half_up(total * pct / Decimal("100"))
        for member, pct in pcts.items()
    }

    # Step 2-3: rounding residual goes to the largest share
    residual = total_amount - sum(shares.values())
    if residual != 0:
        largest = max(shares, key=lambda member: shares[member])
        shares[largest] += residual
        logger.info(
            f"Applied rounding adjustment: {residual} to member {largest}'s share"
        )

    # Step 4
    splits = _net_splits(total_amount, payer, shares)

    assert split_total(splits) == 0, "Percentage split is not balanced"
    return splits


def allocate_custom(amounts: Mapping[MemberId, int]) -> list[Split]:
    """
    Use caller-supplied amounts as-is.

    No computation and no balance guarantee: the result must be validated.
    """
    return [Split(member_id=member, amount=int(amount)) for member, amount in amounts.items()]


def nudge_split(
    splits: list[Split], member_id: MemberId, delta: int = CUSTOM_SPLIT_STEP
) -> list[Split]:
    """Return a copy of ``splits`` with one member's amount moved by ``delta``."""
    found = False
    nudged = []
    for split in splits:
        if split.member_id == member_id:
            found = True
            nudged.append(Split(member_id=member_id, amount=split.amount + delta))
        else:
            nudged.append(split.model_copy())
    if not found:
        nudged.append(Split(member_id=member_id, amount=delta))
    return nudged


def parse_split_amount(value: str | None) -> int:
    """
    Integer value of a parser amount string.

    Decimal strings are truncated toward zero ("-71666.67" -> -71666).
    Missing or unparsable values count as 0.
    """
    if value is None:
        return 0
    try:
        number = Decimal(value.strip().replace(",", ""))
    except InvalidOperation:
        return 0
    if not number.is_finite() or number.adjusted() > 18:
        return 0
    return int(number)


def allocate_from_parsed(
    parsed: ParsedTransaction, members: list[MemberId]
) -> list[Split]:
    """
    Convert the parser's amount map into splits without rebalancing.

    Every fund member gets an entry (0 when the parser omitted them). Ids the
    parser returned that are not fund members are kept at the end so that
    validation reports them instead of silently dropping money.

    Args:
        parsed: Parser output
        members: The fund's member roster

    Returns:
        Splits exactly as the parser described them (may not sum to zero)
    """
    splits = [
        Split(member_id=member, amount=parse_split_amount(parsed.splits.get(member)))
        for member in members
    ]

    roster = set(members)
    for member_id, value in parsed.splits.items():
        if member_id not in roster:
            logger.warning(f"Parser returned amount for unknown member {member_id}")
            splits.append(Split(member_id=member_id, amount=parse_split_amount(value)))

    residual = split_total(splits)
    if residual != 0:
        logger.warning(f"Parsed splits do not balance (residual: {residual})")

    return splits


def allocate_repayment(payer: MemberId, recipient: MemberId, amount: int) -> list[Split]:
    """
    Splits for paying back a debt.

    The payer's balance moves up by ``amount`` and the recipient's moves down.
    """
    if amount <= 0:
        raise AllocationError(f"Repayment amount must be positive, got {amount}")
    if payer == recipient:
        raise AllocationError("Payer and recipient must be different members")
    return [
        Split(member_id=recipient, amount=-amount),
        Split(member_id=payer, amount=amount),
    ]


def convert_amount(amount: int | Decimal, rate: Decimal) -> int:
    """Convert an amount into the target currency's minor unit."""
    return round_half_up(Decimal(amount) * rate)


def convert_splits(splits: list[Split], rate: Decimal) -> list[Split]:
    """
    Convert splits into another currency, preserving the zero-sum invariant.

    Each split is converted independently; the rounding residual is applied to
    the split with the largest absolute value, which minimizes relative error.
    """
    converted = [
        Split(member_id=split.member_id, amount=convert_amount(split.amount, rate))
        for split in splits
    ]
    if not converted:
        return converted

    # A balanced input stays balanced; an unbalanced one keeps its converted residual
    target = convert_amount(split_total(splits), rate)
    drift = target - split_total(converted)
    if drift != 0:
        largest = max(converted, key=lambda s: abs(s.amount))
        largest.amount += drift
        logger.info(
            f"Applied conversion adjustment: {drift} to member {largest.member_id}"
        )

    return converted

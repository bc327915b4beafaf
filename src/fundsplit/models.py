"""Pydantic domain models for FundSplit."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

MemberId = str

# ============================================================================
# Members & Funds
# ============================================================================


class Member(BaseModel):
    """A participant that can belong to one or more funds."""

    id: MemberId
    display_name: str
    email: str = ""


class Fund(BaseModel):
    """A named expense pool. Its member list is the universe for balances."""

    id: str
    name: str
    description: str = ""
    icon: str = ""
    members: list[MemberId] = Field(default_factory=list)
    created_by: MemberId
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None
    currency: str = "VND"
    is_archived: bool = False


class KnownMember(BaseModel):
    """A member id that resolved to a member record."""

    kind: Literal["known"] = "known"
    member: Member

    @property
    def id(self) -> MemberId:
        return self.member.id

    @property
    def label(self) -> str:
        return self.member.display_name


class UnknownMember(BaseModel):
    """A member id with no record in the member directory."""

    kind: Literal["unknown"] = "unknown"
    id: MemberId

    @property
    def label(self) -> str:
        return f"<unknown {self.id}>"


ResolvedMember = Annotated[KnownMember | UnknownMember, Field(discriminator="kind")]


# ============================================================================
# Ledger Models
# ============================================================================


class Split(BaseModel):
    """A signed per-member entry of one transaction.

    Positive = the member is owed money, negative = the member owes money.
    Amounts are integers in the currency's minor unit.
    """

    member_id: MemberId
    amount: int


class TransactionDraft(BaseModel):
    """A transaction that has not been persisted yet."""

    fund_id: str
    description: str
    total_amount: int
    paid_by: MemberId
    splits: list[Split]
    date: datetime | None = None  # when it happened, if different from created_at
    category: str | None = None
    notes: str | None = None
    currency: str = "VND"


class Transaction(TransactionDraft):
    """A persisted transaction. The store assigns id and created_at."""

    id: str
    created_at: datetime


class Balance(BaseModel):
    """A member's net position across all transactions of a fund (derived)."""

    member_id: MemberId
    amount: int


class Transfer(BaseModel):
    """A suggested payment that moves a debtor towards zero."""

    from_member: MemberId
    to_member: MemberId
    amount: int = Field(gt=0)


class ValidationIssue(BaseModel):
    """A single validation finding. Only errors block submission."""

    field: Literal["description", "amount", "splits", "payer"]
    message: str
    severity: Literal["error", "warning"]


# ============================================================================
# Parser Models
# ============================================================================


class ParsedTransaction(BaseModel):
    """Structured output of the natural-language transaction parser.

    Every field may be missing or malformed in what the model returns, so
    fields are optional and ``from_payload`` never raises. Downstream
    allocation and validation decide what is usable.
    """

    payer: MemberId | None = None
    total_amount: int | None = None
    splits: dict[MemberId, str] = Field(default_factory=dict)
    description: str = ""
    reasoning: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ParsedTransaction":
        """Build from the raw JSON object returned by the language model.

        Accepts both the model's wire keys (``desc``, ``totalAmount``,
        ``users``) and this model's own field names.
        """
        payer = payload.get("payer")
        description = payload.get("desc", payload.get("description"))
        reasoning = payload.get("reasoning")
        raw_total = payload.get("totalAmount", payload.get("total_amount"))
        raw_splits = payload.get("users", payload.get("splits"))

        splits: dict[MemberId, str] = {}
        if isinstance(raw_splits, dict):
            for member_id, value in raw_splits.items():
                if isinstance(value, bool) or value is None:
                    continue
                if isinstance(value, (str, int, float)):
                    splits[str(member_id)] = str(value)

        return cls(
            payer=payer if isinstance(payer, str) and payer else None,
            total_amount=_coerce_total(raw_total),
            splits=splits,
            description=description if isinstance(description, str) else "",
            reasoning=reasoning if isinstance(reasoning, str) else None,
        )


def _coerce_total(value: Any) -> int | None:
    """Positive integer total, or None when absent or malformed."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    # NaN, infinities and absurd exponents are not amounts
    if not number.is_finite() or number.adjusted() > 18:
        return None
    total = int(number)
    return total if total > 0 else None

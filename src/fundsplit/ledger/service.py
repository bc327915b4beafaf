"""Service layer that wires the ledger core to its collaborators.

The allocation, validation and balance functions are pure. This module is the
only place that reads from and writes to the store, calls the transaction
parser or looks up currency rates.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from ..clients.currency import CurrencyClient
from ..clients.openai_client import TransactionParser
from ..config import Settings
from ..db import Database
from ..exceptions import ConfigurationError, TransactionRejectedError, UnknownMemberError
from ..models import (
    Fund,
    Member,
    MemberId,
    ParsedTransaction,
    ResolvedMember,
    Split,
    Transaction,
    TransactionDraft,
    Transfer,
    ValidationIssue,
)
from .allocation import (
    CUSTOM_SPLIT_STEP,
    allocate_custom,
    allocate_even,
    allocate_from_parsed,
    allocate_percentage,
    allocate_repayment,
    convert_amount,
    convert_splits,
    nudge_split,
)
from .balances import compute_balances, resolve_member, simplify_debts
from .stats import daily_expenses, member_spending, total_expense
from .validator import TransactionValidator, has_errors

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for managing funds, recording transactions and settling up."""

    def __init__(self, settings: Settings, database: Database):
        """Initialize the ledger service."""
        self.settings = settings
        self.db = database
        self.validator = TransactionValidator(settings.validation_rules())

    # ========================================================================
    # Members & funds
    # ========================================================================

    def add_member(self, member_id: str, display_name: str, email: str = "") -> Member:
        """Create or update a member record."""
        member = Member(id=member_id, display_name=display_name, email=email)
        self.db.save_member(member)
        logger.info(f"Saved member {member_id} ({display_name})")
        return member

    def get_member_directory(self) -> dict[MemberId, Member]:
        """All member records keyed by id."""
        return {member.id: member for member in self.db.get_all_members()}

    def resolve_members(self, member_ids: list[MemberId]) -> list[ResolvedMember]:
        """Resolve ids to member records, keeping unknown ids explicit."""
        directory = self.get_member_directory()
        return [resolve_member(member_id, directory) for member_id in member_ids]

    def create_fund(
        self,
        name: str,
        created_by: MemberId,
        members: list[MemberId] | None = None,
        description: str = "",
        icon: str = "",
        currency: str | None = None,
    ) -> Fund:
        """
        Create a fund. The creator is always a member.

        Raises:
            UnknownMemberError: If a member id has no member record
        """
        roster = list(dict.fromkeys([created_by, *(members or [])]))
        for member_id in roster:
            self._require_member_record(member_id)

        fund = Fund(
            id=uuid.uuid4().hex[:12],
            name=name,
            description=description,
            icon=icon,
            members=roster,
            created_by=created_by,
            currency=(currency or self.settings.default_currency).upper(),
        )
        self.db.save_fund(fund)
        logger.info(f"Created fund '{name}' ({fund.id}) with {len(roster)} members")
        return fund

    def get_fund(self, fund_id: str) -> Fund:
        """Get a fund or raise FundNotFoundError."""
        return self.db.require_fund(fund_id)

    def list_funds(self, include_archived: bool = False) -> list[Fund]:
        """All funds, newest first."""
        return self.db.get_all_funds(include_archived=include_archived)

    def add_fund_member(self, fund_id: str, member_id: MemberId) -> Fund:
        """Add an existing member to a fund (no-op if already a member)."""
        fund = self.get_fund(fund_id)
        self._require_member_record(member_id)
        if member_id in fund.members:
            return fund

        updated = fund.model_copy(
            update={"members": [*fund.members, member_id], "updated_at": datetime.now()}
        )
        self.db.save_fund(updated)
        logger.info(f"Added {member_id} to fund {fund_id}")
        return updated

    def remove_fund_member(self, fund_id: str, member_id: MemberId) -> Fund:
        """
        Remove a member from a fund.

        Their past splits stay in the ledger, so they keep appearing in
        balances as an id outside the roster until they are settled.
        """
        fund = self.get_fund(fund_id)
        if member_id not in fund.members:
            raise UnknownMemberError(member_id, fund_id)
        if member_id == fund.created_by:
            raise ValueError("The fund creator cannot be removed")

        updated = fund.model_copy(
            update={
                "members": [m for m in fund.members if m != member_id],
                "updated_at": datetime.now(),
            }
        )
        self.db.save_fund(updated)
        logger.info(f"Removed {member_id} from fund {fund_id}")
        return updated

    def update_fund(
        self,
        fund_id: str,
        name: str | None = None,
        description: str | None = None,
        icon: str | None = None,
        currency: str | None = None,
    ) -> Fund:
        """
        Edit a fund's details. Fields left as None are unchanged.

        The currency can only change while the fund has no transactions,
        since recorded amounts are stored in the fund currency.
        """
        fund = self.get_fund(fund_id)
        changes = {}

        if name is not None:
            if not name.strip():
                raise ValueError("Fund name cannot be empty")
            changes["name"] = name.strip()
        if description is not None:
            changes["description"] = description
        if icon is not None:
            changes["icon"] = icon
        if currency is not None and currency.upper() != fund.currency:
            if self.db.list_transactions(fund_id):
                raise ValueError(
                    f"Cannot change the currency of '{fund.name}': it already has transactions"
                )
            changes["currency"] = currency.upper()

        if not changes:
            return fund

        updated = fund.model_copy(update={**changes, "updated_at": datetime.now()})
        self.db.save_fund(updated)
        logger.info(f"Updated fund {fund_id}: {', '.join(changes)}")
        return updated

    def archive_fund(self, fund_id: str, archived: bool = True) -> Fund:
        """Hide a fund from the default fund list, or restore it."""
        fund = self.get_fund(fund_id)
        if fund.is_archived == archived:
            return fund

        updated = fund.model_copy(update={"is_archived": archived, "updated_at": datetime.now()})
        self.db.save_fund(updated)
        logger.info(f"{'Archived' if archived else 'Restored'} fund {fund_id}")
        return updated

    def delete_fund(self, fund_id: str) -> Fund:
        """Delete a fund and its whole transaction history."""
        fund = self.get_fund(fund_id)
        self.db.delete_fund(fund_id)
        logger.info(f"Deleted fund '{fund.name}' ({fund_id})")
        return fund

    def _require_member_record(self, member_id: MemberId) -> Member:
        member = self.db.get_member(member_id)
        if member is None:
            raise UnknownMemberError(member_id)
        return member

    # ========================================================================
    # Validation & recording
    # ========================================================================

    def validate_draft(self, fund: Fund, draft: TransactionDraft) -> list[ValidationIssue]:
        """Validate a draft against the fund roster."""
        issues = self.validator.validate_form(
            draft.description, str(draft.total_amount), draft.splits, fund.members
        )
        if draft.paid_by not in fund.members:
            issues.append(
                ValidationIssue(
                    field="payer",
                    message=f"Payer '{draft.paid_by}' is not a member of this fund",
                    severity="error",
                )
            )
        return issues

    def record_transaction(self, draft: TransactionDraft) -> Transaction:
        """
        Validate and persist a transaction.

        Warnings are logged and do not block.

        Raises:
            TransactionRejectedError: If any issue has error severity
        """
        fund = self.get_fund(draft.fund_id)
        issues = self.validate_draft(fund, draft)

        if has_errors(issues):
            logger.warning(
                f"Rejected transaction '{draft.description}' in fund {fund.id}: "
                f"{sum(1 for i in issues if i.severity == 'error')} errors"
            )
            raise TransactionRejectedError(issues)

        for issue in issues:
            logger.warning(f"{issue.field}: {issue.message}")

        transaction = self.db.append_transaction(draft)
        logger.info(
            f"Recorded transaction {transaction.id} '{transaction.description}' "
            f"({transaction.total_amount} {transaction.currency})"
        )
        return transaction

    def _draft(
        self,
        fund: Fund,
        description: str,
        total_amount: int,
        payer: MemberId,
        splits: list[Split],
        notes: str | None = None,
        date: datetime | None = None,
    ) -> TransactionDraft:
        return TransactionDraft(
            fund_id=fund.id,
            description=description,
            total_amount=total_amount,
            paid_by=payer,
            splits=splits,
            notes=notes,
            date=date,
            currency=fund.currency,
        )

    def record_even_split(
        self,
        fund_id: str,
        description: str,
        total_amount: int,
        payer: MemberId,
        participants: list[MemberId] | None = None,
        currency: str | None = None,
    ) -> Transaction:
        """
        Record an evenly split expense.

        Participants default to every fund member. A total in another
        currency is converted into the fund currency before splitting.
        """
        fund = self.get_fund(fund_id)
        total, notes = self._to_fund_currency(fund, total_amount, currency)
        splits = allocate_even(total, payer, participants or fund.members)
        return self.record_transaction(
            self._draft(fund, description, total, payer, splits, notes=notes)
        )

    def record_percentage_split(
        self,
        fund_id: str,
        description: str,
        total_amount: int,
        payer: MemberId,
        percentages: dict[MemberId, Decimal],
        currency: str | None = None,
    ) -> Transaction:
        """Record an expense split by percentage."""
        fund = self.get_fund(fund_id)
        total, notes = self._to_fund_currency(fund, total_amount, currency)
        splits = allocate_percentage(total, payer, percentages)
        return self.record_transaction(
            self._draft(fund, description, total, payer, splits, notes=notes)
        )

    def record_custom_split(
        self,
        fund_id: str,
        description: str,
        total_amount: int,
        payer: MemberId,
        amounts: dict[MemberId, int],
        currency: str | None = None,
        steps: dict[MemberId, int] | None = None,
    ) -> Transaction:
        """
        Record an expense with caller-supplied net amounts (validated).

        ``steps`` moves members' amounts up or down by whole multiples of
        ``CUSTOM_SPLIT_STEP`` before validation; a member without an amount
        gets a new split. Amounts in another currency are converted split by
        split, keeping a balanced set of splits balanced.
        """
        fund = self.get_fund(fund_id)
        splits = allocate_custom(amounts)
        for member_id, count in (steps or {}).items():
            splits = nudge_split(splits, member_id, count * CUSTOM_SPLIT_STEP)
        notes = None
        if currency and currency.upper() != fund.currency:
            rate = self.get_rate(currency, fund.currency)
            splits = convert_splits(splits, rate)
            notes = f"Converted from {total_amount} {currency.upper()} at rate {rate}"
            total_amount = convert_amount(total_amount, rate)
        return self.record_transaction(
            self._draft(fund, description, total_amount, payer, splits, notes=notes)
        )

    def record_repayment(
        self, fund_id: str, payer: MemberId, recipient: MemberId, amount: int
    ) -> Transaction:
        """Record ``payer`` paying ``recipient`` back."""
        fund = self.get_fund(fund_id)
        directory = self.get_member_directory()
        recipient_label = resolve_member(recipient, directory).label
        splits = allocate_repayment(payer, recipient, amount)
        return self.record_transaction(
            self._draft(fund, f"Payment to {recipient_label}", amount, payer, splits)
        )

    # ========================================================================
    # Parser
    # ========================================================================

    def parse_transaction(
        self, fund_id: str, text: str, acting_user_id: MemberId | None = None
    ) -> ParsedTransaction:
        """
        Parse free text with the configured language model.

        Raises:
            ConfigurationError: If no parser API key is configured
        """
        if not self.settings.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set; natural-language parsing is unavailable"
            )

        fund = self.get_fund(fund_id)
        directory = self.get_member_directory()
        members = [directory[m] for m in fund.members if m in directory]

        parser = TransactionParser(
            api_key=self.settings.openai_api_key,
            model=self.settings.parser_model,
            base_url=self.settings.parser_base_url,
        )
        return parser.parse_transaction(text, fund, members, acting_user_id)

    def draft_from_parsed(
        self, fund_id: str, parsed: ParsedTransaction
    ) -> tuple[TransactionDraft, list[ValidationIssue]]:
        """
        Turn parser output into a draft plus its validation issues.

        Nothing is rebalanced: the user is expected to review the issues
        before recording.
        """
        fund = self.get_fund(fund_id)
        splits = allocate_from_parsed(parsed, fund.members)
        draft = self._draft(
            fund,
            parsed.description,
            parsed.total_amount or 0,
            parsed.payer or "",
            splits,
            notes=parsed.reasoning,
        )
        return draft, self.validate_draft(fund, draft)

    # ========================================================================
    # Balances & settlement
    # ========================================================================

    def get_balances(self, fund_id: str) -> dict[MemberId, int]:
        """Net balance per member, recomputed from the full history."""
        fund = self.get_fund(fund_id)
        transactions = self.db.list_transactions(fund_id)
        return compute_balances(transactions, fund.members)

    def suggest_settlement(self, fund_id: str) -> list[Transfer]:
        """Fewest greedy transfers that zero every balance."""
        transfers = simplify_debts(self.get_balances(fund_id))
        logger.info(f"Suggested {len(transfers)} transfers for fund {fund_id}")
        return transfers

    def apply_settlement(
        self, fund_id: str, transfers: list[Transfer]
    ) -> list[Transaction]:
        """Record each suggested transfer as a repayment."""
        return [
            self.record_repayment(
                fund_id, transfer.from_member, transfer.to_member, transfer.amount
            )
            for transfer in transfers
        ]

    def get_summary(self, fund_id: str) -> dict:
        """Spending statistics for a fund."""
        transactions = self.db.list_transactions(fund_id)
        return {
            "transaction_count": len(transactions),
            "total_expense": total_expense(transactions),
            "daily": daily_expenses(transactions),
            "member_spending": member_spending(transactions),
        }

    # ========================================================================
    # Currency
    # ========================================================================

    def get_rate(self, base: str, target: str) -> Decimal:
        """Conversion rate from ``base`` to ``target``."""
        with CurrencyClient(self.settings.currency_api_url) as client:
            return client.get_rate(base, target)

    def _to_fund_currency(
        self, fund: Fund, amount: int, currency: str | None
    ) -> tuple[int, str | None]:
        """Convert an amount into the fund currency, with a note when converted."""
        if not currency or currency.upper() == fund.currency:
            return amount, None

        rate = self.get_rate(currency, fund.currency)
        converted = convert_amount(amount, rate)
        logger.info(f"Converted {amount} {currency} -> {converted} {fund.currency}")
        return converted, f"Converted from {amount} {currency.upper()} at rate {rate}"

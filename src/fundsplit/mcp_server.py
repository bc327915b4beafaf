"""MCP server for FundSplit: exposes fund balances and expense entry as tools."""

import logging
from dataclasses import dataclass

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .db import Database
from .exceptions import FundSplitError, TransactionRejectedError
from .ledger.balances import balances_as_records, resolve_member
from .ledger.service import LedgerService
from .ledger.validator import has_errors
from .models import Member, MemberId, TransactionDraft, ValidationIssue

logger = logging.getLogger(__name__)

mcp_app = FastMCP("fundsplit")

# ---------------------------------------------------------------------------
# Session state: one MCP server process = one conversation
# ---------------------------------------------------------------------------

WORKFLOW_INSTRUCTIONS = """\
You are helping a group keep track of shared expenses. Follow this workflow:

1. DISCOVER: Call list_funds to find the fund the user is talking about.

2. ENTER: For a free-text expense, call parse_transaction with the fund id,
   the text and the id of the member speaking. Show the user the draft.
   - If the draft has ERRORS, explain them and ask the user to rephrase.
     Never invent amounts to make the splits balance.
   - If it only has warnings, mention them.
   For a simple even split, call record_even_transaction directly.

3. CONFIRM: Ask "Record this transaction?" and call record_parsed_transaction
   only after the user agrees.

4. SETTLE: Call show_balances and suggest_settlement when the user asks who
   owes whom.

Positive balance = the member is owed money, negative = the member owes money.\
"""


@dataclass
class SessionState:
    """Holds state between MCP tool calls within a single conversation."""

    service: LedgerService | None = None
    db: Database | None = None
    draft: TransactionDraft | None = None


_state = SessionState()


def _ensure_service() -> LedgerService:
    """Lazily initialize the LedgerService (loads .env config)."""
    if _state.service is None:
        settings = load_settings()
        _state.db = Database(settings.database_path)
        _state.service = LedgerService(settings, _state.db)
    return _state.service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_amount(amount: int, currency: str) -> str:
    """Format an amount in accounting style."""
    if amount < 0:
        return f"({abs(amount):,} {currency})"
    return f"{amount:,} {currency}"


def _format_draft(draft: TransactionDraft, directory: dict[MemberId, Member]) -> list[str]:
    payer = resolve_member(draft.paid_by, directory).label if draft.paid_by else "?"
    lines = [
        f"  Description: {draft.description or '?'}",
        f"  Paid by: {payer}",
        f"  Total: {_format_amount(draft.total_amount, draft.currency)}",
        "",
        "Splits:",
    ]
    for split in draft.splits:
        label = resolve_member(split.member_id, directory).label
        lines.append(f"  - {label}: {_format_amount(split.amount, draft.currency)}")
    return lines


def _format_issues(issues: list[ValidationIssue]) -> list[str]:
    return [f"  {issue.severity.upper()} [{issue.field}]: {issue.message}" for issue in issues]


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------


@mcp_app.tool()
def list_funds() -> str:
    """List all active funds with their ids, currency and members."""
    try:
        service = _ensure_service()
        funds = service.list_funds()

        if not funds:
            return "No funds found. Create one with: fundsplit fund create"

        directory = service.get_member_directory()
        lines = ["Funds:"]
        for fund in funds:
            members = ", ".join(
                f"{resolve_member(m, directory).label} ({m})" for m in fund.members
            )
            lines.append(f"- {fund.name} | id: {fund.id} | {fund.currency} | {members}")
        return "\n".join(lines)
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list funds: {e}"


@mcp_app.tool()
def show_balances(fund_id: str) -> str:
    """Show every member's net balance in a fund.

    Args:
        fund_id: Fund id from list_funds.
    """
    try:
        service = _ensure_service()
        fund = service.get_fund(fund_id)
        directory = service.get_member_directory()

        lines = [f"Balances for {fund.name}:"]
        for balance in balances_as_records(service.get_balances(fund_id)):
            label = resolve_member(balance.member_id, directory).label
            lines.append(f"  {label}: {_format_amount(balance.amount, fund.currency)}")
        return "\n".join(lines)
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to show balances: {e}"


@mcp_app.tool()
def suggest_settlement(fund_id: str) -> str:
    """Suggest the payments that settle every balance in a fund.

    Args:
        fund_id: Fund id from list_funds.
    """
    try:
        service = _ensure_service()
        fund = service.get_fund(fund_id)
        transfers = service.suggest_settlement(fund_id)

        if not transfers:
            return f"Everyone in {fund.name} is settled up."

        directory = service.get_member_directory()
        lines = [f"Suggested payments for {fund.name}:"]
        for transfer in transfers:
            payer = resolve_member(transfer.from_member, directory).label
            recipient = resolve_member(transfer.to_member, directory).label
            lines.append(
                f"  {payer} pays {recipient} {_format_amount(transfer.amount, fund.currency)}"
            )
        return "\n".join(lines)
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to suggest settlement: {e}"


@mcp_app.tool()
def parse_transaction(fund_id: str, text: str, acting_member_id: str) -> str:
    """Parse a free-text expense into a draft transaction.

    The draft is kept for record_parsed_transaction. It is never rebalanced.

    Args:
        fund_id: Fund id from list_funds.
        text: The expense as the user described it.
        acting_member_id: Id of the member entering the expense.
    """
    try:
        service = _ensure_service()
        parsed = service.parse_transaction(fund_id, text, acting_member_id)
        draft, issues = service.draft_from_parsed(fund_id, parsed)
        _state.draft = draft

        lines = ["Draft Transaction:", *_format_draft(draft, service.get_member_directory())]
        if parsed.reasoning:
            lines += ["", f"Reasoning: {parsed.reasoning}"]
        if issues:
            lines += ["", "Validation:", *_format_issues(issues)]
        if has_errors(issues):
            lines += ["", "This draft cannot be recorded until the errors are fixed."]
        else:
            lines += ["", "Call record_parsed_transaction to record it."]
        return "\n".join(lines)
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to parse transaction: {e}"


@mcp_app.tool()
def record_parsed_transaction() -> str:
    """Record the draft from the previous parse_transaction call."""
    try:
        service = _ensure_service()

        if _state.draft is None:
            return "Error: No draft loaded. Call parse_transaction first."

        transaction = service.record_transaction(_state.draft)
        _state.draft = None

        return (
            f"Transaction recorded!\n"
            f"ID: {transaction.id}\n"
            f"Amount: {_format_amount(transaction.total_amount, transaction.currency)}"
        )
    except TransactionRejectedError as e:
        return "\n".join(["Transaction rejected:", *_format_issues(e.issues)])
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to record transaction: {e}"


@mcp_app.tool()
def record_even_transaction(
    fund_id: str,
    description: str,
    total_amount: int,
    payer_id: str,
    participant_ids: list[str] | None = None,
) -> str:
    """Record an expense split evenly between participants.

    Args:
        fund_id: Fund id from list_funds.
        description: What the money was for.
        total_amount: Total paid, in the fund currency's smallest unit.
        payer_id: Member who paid.
        participant_ids: Members sharing the cost (default: every fund member).
    """
    try:
        service = _ensure_service()
        transaction = service.record_even_split(
            fund_id, description, total_amount, payer_id, participant_ids
        )
        lines = [
            f"Transaction recorded! ID: {transaction.id}",
            *_format_draft(transaction, service.get_member_directory()),
        ]
        return "\n".join(lines)
    except TransactionRejectedError as e:
        return "\n".join(["Transaction rejected:", *_format_issues(e.issues)])
    except FundSplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to record transaction: {e}"


# ---------------------------------------------------------------------------
# MCP Prompt
# ---------------------------------------------------------------------------


@mcp_app.prompt()
def expense_workflow() -> str:
    """Instructions for entering expenses and settling up."""
    return WORKFLOW_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_server():
    """Start the MCP server (stdio transport)."""
    mcp_app.run(transport="stdio")

"""Transaction commands for the FundSplit CLI."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from ..config import load_settings
from ..db import Database
from ..exceptions import ConfigurationError, TransactionRejectedError
from ..models import Member, MemberId, ResolvedMember, TransactionDraft, ValidationIssue
from .allocation import CUSTOM_SPLIT_STEP
from .balances import resolve_member
from .service import LedgerService
from .ui import confirm
from .validator import has_errors, parse_amount

app = typer.Typer(help="Record and list fund transactions")

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool = False) -> Iterator[LedgerService]:
    """Load settings, open the database and report failures uniformly."""
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield LedgerService(settings, db)
    except TransactionRejectedError as e:
        console.print("\n[bold red]Transaction rejected:[/bold red]")
        display_issues(e.issues)
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def resolve_fund_id(service: LedgerService, fund_id: str | None) -> str:
    """Use the given fund or fall back to the active fund."""
    fund_id = fund_id or service.db.get_active_fund_id()
    if not fund_id:
        raise ConfigurationError(
            "No fund given and no active fund set. Run: fundsplit fund use <FUND_ID>"
        )
    return fund_id


def format_money(amount: int, currency: str = "", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85,000 VND)
    Positive amounts have spaces:      85,000 VND
    """
    suffix = f" {currency}" if currency else ""
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"([red]{abs_amount:,}{suffix}[/red])"
        return f"({abs_amount:,}{suffix})"
    if use_color:
        return f" [green]{abs_amount:,}{suffix}[/green] "
    return f" {abs_amount:,}{suffix} "


def display_name(resolved: ResolvedMember) -> str:
    """Label a resolved member, flagging unknown ids."""
    if resolved.kind == "unknown":
        return f"[yellow]{resolved.label}[/yellow]"
    return resolved.label


def display_issues(issues: list[ValidationIssue]):
    """Print validation issues, errors first."""
    for issue in sorted(issues, key=lambda i: i.severity != "error"):
        if issue.severity == "error":
            console.print(f"  [red]✗ {issue.field}: {issue.message}[/red]")
        else:
            console.print(f"  [yellow]⚠️  {issue.field}: {issue.message}[/yellow]")


def display_draft(draft: TransactionDraft, directory: dict[MemberId, Member]):
    """Display a draft transaction in a table."""
    payer = resolve_member(draft.paid_by, directory) if draft.paid_by else None

    console.print("\n[bold]Draft Transaction:[/bold]")
    console.print(f"  Description: {draft.description or '[dim]—[/dim]'}")
    console.print(f"  Payer: {display_name(payer) if payer else '[dim]—[/dim]'}")
    console.print(f"  Total: {format_money(draft.total_amount, draft.currency)}")
    console.print()

    table = Table(title="Splits", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Amount", justify="right")
    for split in draft.splits:
        table.add_row(
            display_name(resolve_member(split.member_id, directory)),
            format_money(split.amount, draft.currency),
        )
    console.print(table)

    residual = sum(split.amount for split in draft.splits)
    if residual == 0:
        console.print("  [green]✓ Splits balance[/green]")
    else:
        console.print(f"  [red]✗ Splits are off by {residual:,}[/red]")


def parse_assignments(values: list[str], option: str) -> dict[str, str]:
    """Parse repeated MEMBER=VALUE options."""
    assignments = {}
    for value in values:
        member_id, sep, raw = value.partition("=")
        if not sep or not member_id or not raw:
            raise typer.BadParameter(f"Expected MEMBER=VALUE, got '{value}'", param_hint=option)
        assignments[member_id.strip()] = raw.strip()
    return assignments


def parse_percentages(values: list[str]) -> dict[str, Decimal]:
    """Parse --percent options into Decimal percentages."""
    try:
        return {
            member: Decimal(value)
            for member, value in parse_assignments(values, "--percent").items()
        }
    except InvalidOperation as e:
        raise typer.BadParameter("Percentages must be numbers", param_hint="--percent") from e


def parse_custom_amounts(values: list[str]) -> dict[str, int]:
    """Parse --custom options into signed integer amounts."""
    amounts = {}
    for member, value in parse_assignments(values, "--custom").items():
        parsed = parse_amount(value)
        if parsed is None:
            raise typer.BadParameter(f"Invalid amount '{value}'", param_hint="--custom")
        amounts[member] = parsed
    return amounts


def parse_steps(values: list[str]) -> dict[str, int]:
    """Parse --step options into whole step counts."""
    steps = {}
    for member, value in parse_assignments(values, "--step").items():
        try:
            steps[member] = int(value)
        except ValueError as e:
            raise typer.BadParameter(
                f"Steps must be whole numbers, got '{value}'", param_hint="--step"
            ) from e
    return steps


@app.command("add")
def add(
    description: str = typer.Argument(..., help="What the money was for"),
    amount: str = typer.Argument(..., help="Total amount, e.g. 150000, 150.000 or 150k"),
    payer: str = typer.Option(..., "--payer", "-p", help="Member who paid"),
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    participant: list[str] = typer.Option(
        [], "--participant", help="Member sharing an even split (default: everyone)"
    ),
    percent: list[str] = typer.Option([], "--percent", help="MEMBER=PERCENT (repeatable)"),
    custom: list[str] = typer.Option(
        [], "--custom", help="MEMBER=NET_AMOUNT (repeatable), must balance to zero"
    ),
    step: list[str] = typer.Option(
        [],
        "--step",
        help=f"MEMBER=STEPS: move a custom amount by STEPS x {CUSTOM_SPLIT_STEP:,} (repeatable)",
    ),
    currency: str | None = typer.Option(
        None, "--currency", help="Currency of AMOUNT if not the fund currency"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Record an expense.

    Splits evenly by default. Use --percent for a percentage split or --custom
    to give every member's net amount explicitly.
    """
    if percent and custom:
        raise typer.BadParameter("Use either --percent or --custom, not both")
    if step and not custom:
        raise typer.BadParameter("--step only adjusts a --custom split", param_hint="--step")

    total = parse_amount(amount)
    if total is None or total <= 0:
        console.print(f"[bold red]Error:[/bold red] '{amount}' is not a valid amount")
        sys.exit(1)

    percentages = parse_percentages(percent)
    amounts = parse_custom_amounts(custom)
    steps = parse_steps(step)

    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)

        if percentages:
            transaction = service.record_percentage_split(
                fund_id, description, total, payer, percentages, currency=currency
            )
        elif amounts:
            transaction = service.record_custom_split(
                fund_id, description, total, payer, amounts, currency=currency, steps=steps
            )
        else:
            transaction = service.record_even_split(
                fund_id, description, total, payer, participant or None, currency=currency
            )

        display_draft(transaction, service.get_member_directory())
        console.print(f"\n[bold green]✓ Recorded transaction {transaction.id}[/bold green]")


@app.command("list")
def list_transactions(
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a fund's transactions, oldest first."""
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)
        fund_record = service.get_fund(fund_id)
        directory = service.get_member_directory()
        transactions = service.db.list_transactions(fund_id)

        if not transactions:
            console.print("[yellow]No transactions yet.[/yellow]")
            return

        table = Table(
            title=f"Transactions: {fund_record.name}",
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("Date", style="dim", width=10)
        table.add_column("Description", style="cyan", width=40)
        table.add_column("Paid by")
        table.add_column("Amount", justify="right", width=16)

        for tx in transactions:
            desc = tx.description
            table.add_row(
                (tx.date or tx.created_at).date().isoformat(),
                desc[:40] + "..." if len(desc) > 40 else desc,
                display_name(resolve_member(tx.paid_by, directory)),
                format_money(tx.total_amount, tx.currency),
            )
        console.print(table)


@app.command("parse")
def parse(
    text: str = typer.Argument(..., help="Free-text description of the expense"),
    acting_user: str = typer.Option(..., "--as", help="Member entering the transaction"),
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Parse a free-text expense with the language model and record it.

    The parsed splits are shown for review; they are never rebalanced
    automatically, so an unbalanced result has to be re-entered.
    """
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)

        console.print("\n[bold blue]Parsing transaction...[/bold blue]")
        parsed = service.parse_transaction(fund_id, text, acting_user)
        draft, issues = service.draft_from_parsed(fund_id, parsed)

        display_draft(draft, service.get_member_directory())
        if parsed.reasoning:
            console.print(f"\n[dim]{parsed.reasoning}[/dim]")

        if issues:
            console.print("\n[bold]Validation:[/bold]")
            display_issues(issues)

        if has_errors(issues):
            console.print("\n[yellow]Fix the errors above and try again.[/yellow]")
            sys.exit(1)

        if not yes and not confirm("Record this transaction?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        transaction = service.record_transaction(draft)
        console.print(f"\n[bold green]✓ Recorded transaction {transaction.id}[/bold green]")

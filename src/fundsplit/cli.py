"""CLI for FundSplit using Typer."""

import sys

import typer
from rich.table import Table

from .ledger.balances import balances_as_records, resolve_member
from .ledger.cli import (
    app as tx_app,
    console,
    display_name,
    format_money,
    open_service,
    resolve_fund_id,
)
from .ledger.ui import confirm, select_member_interactive
from .ledger.validator import parse_amount
from .mcp_server import run_server

app = typer.Typer(
    name="fundsplit",
    help="Split group expenses and work out who owes whom",
)
member_app = typer.Typer(help="Manage member records")
fund_app = typer.Typer(help="Manage funds and their members")

app.add_typer(member_app, name="member")
app.add_typer(fund_app, name="fund")
app.add_typer(tx_app, name="tx", help="Record and list transactions")


# ============================================================================
# Members
# ============================================================================


@member_app.command("add")
def member_add(
    member_id: str = typer.Argument(..., help="Unique member id"),
    name: str = typer.Argument(..., help="Display name"),
    email: str = typer.Option("", "--email", help="Email address"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create or update a member record."""
    with open_service(verbose) as service:
        member = service.add_member(member_id, name, email)
        console.print(f"[green]✓ Saved member {member.display_name} ({member.id})[/green]")


@member_app.command("list")
def member_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List all member records."""
    with open_service(verbose) as service:
        table = Table(title="Members", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Email")
        for member in service.get_member_directory().values():
            table.add_row(member.id, member.display_name, member.email)
        console.print(table)


# ============================================================================
# Funds
# ============================================================================


@fund_app.command("create")
def fund_create(
    name: str = typer.Argument(..., help="Fund name"),
    creator: str = typer.Option(..., "--creator", help="Member creating the fund"),
    member: list[str] = typer.Option([], "--member", "-m", help="Member id (repeatable)"),
    description: str = typer.Option("", "--description", help="Fund description"),
    currency: str | None = typer.Option(None, "--currency", help="Fund currency code"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a fund and make it the active fund."""
    with open_service(verbose) as service:
        fund = service.create_fund(
            name, creator, member, description=description, currency=currency
        )
        service.db.set_active_fund_id(fund.id)
        console.print(f"[green]✓ Created fund '{fund.name}' ({fund.id}), now active[/green]")


@fund_app.command("list")
def fund_list(
    archived: bool = typer.Option(False, "--archived", help="Include archived funds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List funds, newest first."""
    with open_service(verbose) as service:
        active = service.db.get_active_fund_id()
        table = Table(title="Funds", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Members", justify="right")
        table.add_column("Currency")
        for fund in service.list_funds(include_archived=archived):
            marker = " *" if fund.id == active else ""
            name = f"{fund.name} [dim](archived)[/dim]" if fund.is_archived else fund.name
            table.add_row(fund.id + marker, name, str(len(fund.members)), fund.currency)
        console.print(table)


@fund_app.command("show")
def fund_show(
    fund: str | None = typer.Argument(None, help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show a fund and its members."""
    with open_service(verbose) as service:
        record = service.get_fund(resolve_fund_id(service, fund))
        icon = f"{record.icon} " if record.icon else ""
        console.print(f"\n{icon}[bold]{record.name}[/bold] ({record.id})")
        if record.is_archived:
            console.print("  [dim]Archived[/dim]")
        if record.description:
            console.print(f"  {record.description}")
        console.print(f"  Currency: {record.currency}")
        console.print("  Members:")
        for resolved in service.resolve_members(record.members):
            console.print(f"    - {display_name(resolved)}")


@fund_app.command("add-member")
def fund_add_member(
    member_id: str = typer.Argument(..., help="Member to add"),
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add an existing member to a fund."""
    with open_service(verbose) as service:
        record = service.add_fund_member(resolve_fund_id(service, fund), member_id)
        console.print(f"[green]✓ {member_id} is a member of '{record.name}'[/green]")


@fund_app.command("remove-member")
def fund_remove_member(
    member_id: str = typer.Argument(..., help="Member to remove"),
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Remove a member from a fund. Their past splits stay in the ledger."""
    with open_service(verbose) as service:
        record = service.remove_fund_member(resolve_fund_id(service, fund), member_id)
        console.print(f"[green]✓ Removed {member_id} from '{record.name}'[/green]")


@fund_app.command("edit")
def fund_edit(
    fund: str | None = typer.Argument(None, help="Fund id (default: active fund)"),
    name: str | None = typer.Option(None, "--name", help="New fund name"),
    description: str | None = typer.Option(None, "--description", help="New description"),
    icon: str | None = typer.Option(None, "--icon", help="New icon"),
    currency: str | None = typer.Option(
        None, "--currency", help="New currency code (only before any transaction)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit a fund's name, description, icon or currency."""
    with open_service(verbose) as service:
        record = service.update_fund(
            resolve_fund_id(service, fund),
            name=name,
            description=description,
            icon=icon,
            currency=currency,
        )
        console.print(f"[green]✓ Saved fund '{record.name}' ({record.id})[/green]")


@fund_app.command("archive")
def fund_archive(
    fund: str | None = typer.Argument(None, help="Fund id (default: active fund)"),
    restore: bool = typer.Option(False, "--restore", help="Unarchive the fund instead"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Archive a fund so it is hidden from the fund list."""
    with open_service(verbose) as service:
        record = service.archive_fund(resolve_fund_id(service, fund), archived=not restore)
        state = "archived" if record.is_archived else "restored"
        console.print(f"[green]✓ Fund '{record.name}' {state}[/green]")


@fund_app.command("delete")
def fund_delete(
    fund: str = typer.Argument(..., help="Fund id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a fund and all of its transactions."""
    with open_service(verbose) as service:
        record = service.get_fund(fund)
        count = len(service.db.list_transactions(record.id))

        if not yes and not confirm(
            f"Delete '{record.name}' and its {count} transactions? This cannot be undone."
        ):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        service.delete_fund(record.id)
        console.print(f"[green]✓ Deleted fund '{record.name}'[/green]")


@fund_app.command("use")
def fund_use(
    fund: str = typer.Argument(..., help="Fund id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Set the active fund used when --fund is omitted."""
    with open_service(verbose) as service:
        record = service.get_fund(fund)
        service.db.set_active_fund_id(record.id)
        console.print(f"[green]✓ Active fund: {record.name} ({record.id})[/green]")


# ============================================================================
# Balances & settlement
# ============================================================================


@app.command()
def balances(
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show every member's net balance (positive = is owed money)."""
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)
        record = service.get_fund(fund_id)
        directory = service.get_member_directory()

        table = Table(
            title=f"Balances: {record.name}", show_header=True, header_style="bold magenta"
        )
        table.add_column("Member", style="cyan")
        table.add_column("Balance", justify="right", width=20)
        for balance in balances_as_records(service.get_balances(fund_id)):
            table.add_row(
                display_name(resolve_member(balance.member_id, directory)),
                format_money(balance.amount, record.currency),
            )
        console.print(table)


@app.command()
def settle(
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    apply: bool = typer.Option(
        False, "--apply", help="Record the suggested transfers as payments"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Suggest the fewest payments that settle every balance."""
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)
        record = service.get_fund(fund_id)
        directory = service.get_member_directory()
        transfers = service.suggest_settlement(fund_id)

        if not transfers:
            console.print("[green]✓ Everyone is settled up.[/green]")
            return

        table = Table(title="Suggested Payments", show_header=True, header_style="bold magenta")
        table.add_column("From", style="cyan")
        table.add_column("To", style="cyan")
        table.add_column("Amount", justify="right", width=20)
        for transfer in transfers:
            table.add_row(
                display_name(resolve_member(transfer.from_member, directory)),
                display_name(resolve_member(transfer.to_member, directory)),
                format_money(transfer.amount, record.currency),
            )
        console.print(table)

        if not apply:
            console.print(
                "\n[bold]To record these payments, run:[/bold]\n"
                "  [cyan]fundsplit settle --apply[/cyan]\n"
            )
            return

        if not yes and not confirm(f"Record {len(transfers)} payments?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        recorded = service.apply_settlement(fund_id, transfers)
        console.print(f"\n[bold green]✓ Recorded {len(recorded)} payments[/bold green]")


@app.command()
def pay(
    amount: str | None = typer.Argument(
        None, help="Amount to pay (default: the payer's whole debt)"
    ),
    payer: str = typer.Option(..., "--from", help="Member paying"),
    recipient: str | None = typer.Option(
        None, "--to", help="Member receiving (prompted if omitted)"
    ),
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Record paying money back to another member.

    Any member with a positive balance can receive a payment.
    """
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)
        record = service.get_fund(fund_id)
        current = service.get_balances(fund_id)

        if amount is None:
            if current.get(payer, 0) >= 0:
                console.print(f"[yellow]{payer} has no debt to pay.[/yellow]")
                return
            value = -current[payer]
        else:
            parsed = parse_amount(amount)
            if parsed is None or parsed <= 0:
                console.print(f"[bold red]Error:[/bold red] '{amount}' is not a valid amount")
                sys.exit(1)
            value = parsed

        if recipient is None:
            directory = service.get_member_directory()
            creditors = [
                directory[m]
                for m in record.members
                if m != payer and m in directory and current.get(m, 0) > 0
            ]
            if not creditors:
                console.print("[yellow]Nobody in this fund is owed money.[/yellow]")
                return
            recipient = select_member_interactive(creditors, prompt="Pay to")
            if recipient is None:
                console.print("[yellow]No recipient selected.[/yellow]")
                return

        transaction = service.record_repayment(fund_id, payer, recipient, value)
        console.print(
            f"[bold green]✓ Recorded {transaction.description}: "
            f"{format_money(value, record.currency)}[/bold green]"
        )


@app.command()
def summary(
    fund: str | None = typer.Option(None, "--fund", "-f", help="Fund id (default: active fund)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show spending statistics for a fund."""
    with open_service(verbose) as service:
        fund_id = resolve_fund_id(service, fund)
        record = service.get_fund(fund_id)
        stats = service.get_summary(fund_id)
        directory = service.get_member_directory()

        console.print(f"\n[bold]{record.name}[/bold]")
        console.print(f"  Transactions: {stats['transaction_count']}")
        console.print(f"  Total volume: {format_money(stats['total_expense'], record.currency)}")

        daily = Table(title="Daily Volume", show_header=True, header_style="bold magenta")
        daily.add_column("Day", style="dim")
        daily.add_column("Transactions", justify="right")
        daily.add_column("Volume", justify="right", width=20)
        for day, entry in stats["daily"].items():
            daily.add_row(day, str(entry["count"]), format_money(entry["expense"], record.currency))
        console.print(daily)

        spending = Table(title="Spending per Member", show_header=True, header_style="bold magenta")
        spending.add_column("Member", style="cyan")
        spending.add_column("Consumed", justify="right", width=20)
        for member_id, consumed in sorted(
            stats["member_spending"].items(), key=lambda kv: -kv[1]
        ):
            spending.add_row(
                display_name(resolve_member(member_id, directory)),
                format_money(consumed, record.currency),
            )
        console.print(spending)


@app.command()
def mcp():
    """Start the MCP server so an assistant can query and record transactions."""
    run_server()


if __name__ == "__main__":
    app()

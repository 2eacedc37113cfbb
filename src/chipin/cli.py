"""CLI for ChipIn using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .db import Database
from .exceptions import ChipInError, LedgerValidationError
from .identity import StaticIdentity
from .models import SPLIT_TYPES, SplitItem
from .service import LedgerService
from .simplifier import currency_symbol, format_debt
from .ui import (
    confirm_action,
    select_debt_interactive,
    select_participant_interactive,
    select_settlement_interactive,
)

app = typer.Typer(
    name="chipin",
    help="Track shared expenses, see who owes whom, and settle up",
)

console = Console()

# Global options collected by the callback
state: dict = {"as_email": None, "database": None, "verbose": False}


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@app.callback()
def main(
    as_email: str | None = typer.Option(
        None, "--as", help="Act as this participant (overrides CHIPIN_USER_EMAIL)"
    ),
    database: Path | None = typer.Option(
        None, "--database", help="Path to the ChipIn database"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Shared expense lists for groups of people."""
    state["as_email"] = as_email
    state["database"] = database
    state["verbose"] = verbose
    setup_logging(verbose)


@contextmanager
def open_service() -> Iterator[LedgerService]:
    """Build a service for one command and report errors the CLI way."""
    db = None
    try:
        overrides = {}
        if state["database"]:
            overrides["database_path"] = state["database"]
        settings = load_settings(**overrides)
        db = Database(settings.database_path, timeout=settings.busy_timeout)
        identity = StaticIdentity(state["as_email"]) if state["as_email"] else None
        yield LedgerService(settings, db, identity)
    except ChipInError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if state["verbose"]:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def format_money(
    amount: float, use_color: bool = True, currency_code: str = "USD"
) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    Currencies other than USD are prefixed with their code: (EUR 85.02)
    """
    symbol = currency_symbol(currency_code)
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"({symbol}[red]{abs_amount:,.2f}[/red])"
        return f"({symbol}{abs_amount:,.2f})"
    if use_color:
        return f" [green]{symbol}{abs_amount:,.2f}[/green] "
    return f" {symbol}{abs_amount:,.2f} "


def parse_split_items(raw_items: list[str]) -> list[SplitItem]:
    """Parse --item email=value options into split items."""
    items = []
    for raw in raw_items:
        email, sep, value = raw.partition("=")
        if not sep:
            raise LedgerValidationError(f"Split item '{raw}' must look like email=value")
        try:
            items.append(SplitItem(email=email, value=float(value)))
        except ValueError as e:
            raise LedgerValidationError(f"Split item '{raw}' has a bad value") from e
    return items


# ============================================================================
# Lists and membership
# ============================================================================


@app.command("create-list")
def create_list(
    name: str = typer.Argument(..., help="Name of the new list"),
    share: list[str] | None = typer.Option(
        None, "--share", "-s", help="Email to share with (repeatable)"
    ),
):
    """Create a new expense list you own."""
    with open_service() as service:
        expense_list = service.create_list(name, share or [])
        console.print(
            f"\n[bold green]✓ Created list '{expense_list.name}'[/bold green] "
            f"[dim]({expense_list.id})[/dim]"
        )


@app.command("lists")
def show_lists():
    """Show the lists you own or that are shared with you."""
    with open_service() as service:
        lists = service.get_lists()
        if not lists:
            console.print("[yellow]No lists yet.[/yellow]")
            return

        me = service.current_participant()
        table = Table(title="Expense Lists", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Owner")
        table.add_column("Members", justify="right")
        for expense_list in lists:
            owner = "you" if expense_list.owner_email == me else expense_list.owner_email
            table.add_row(
                expense_list.id, expense_list.name, owner, str(len(expense_list.members))
            )
        console.print(table)


@app.command()
def share(
    list_id: str = typer.Argument(..., help="List ID"),
    email: str = typer.Argument(..., help="Email to share with"),
):
    """Share a list with someone (dynamic expenses include them from now on)."""
    with open_service() as service:
        adjusted = service.share_list(list_id, email)
        console.print(f"\n[bold green]✓ Shared with {email}[/bold green]")
        if adjusted:
            console.print(f"[dim]{len(adjusted)} dynamic expenses now include them[/dim]")


@app.command()
def unshare(
    list_id: str = typer.Argument(..., help="List ID"),
    email: str | None = typer.Argument(None, help="Email to remove"),
):
    """Revoke someone's access to a list."""
    with open_service() as service:
        if email is None:
            expense_list = service.get_list(list_id)
            email = select_participant_interactive(
                expense_list.shared_emails, "Who should lose access?"
            )
            if email is None:
                console.print("[yellow]No participant selected.[/yellow]")
                return

        adjusted = service.remove_access(list_id, email)
        console.print(f"\n[bold green]✓ Removed {email}[/bold green]")
        if adjusted:
            console.print(f"[dim]{len(adjusted)} dynamic expenses adjusted[/dim]")


@app.command()
def activity(list_id: str = typer.Argument(..., help="List ID")):
    """Show who was added to or removed from a list."""
    with open_service() as service:
        entries = service.get_activity_log(list_id)
        if not entries:
            console.print("[yellow]No membership changes yet.[/yellow]")
            return
        for entry in entries:
            verb = "shared with" if entry.action == "share" else "removed"
            console.print(
                f"  {entry.created_at:%Y-%m-%d %H:%M}  {entry.actor_email} "
                f"{verb} {entry.subject_email}"
            )


# ============================================================================
# Expenses
# ============================================================================


@app.command("add-expense")
def add_expense(
    list_id: str = typer.Argument(..., help="List ID"),
    description: str = typer.Argument(..., help="What was bought"),
    amount: float = typer.Argument(..., help="Total amount"),
    paid_by: str | None = typer.Option(
        None, "--paid-by", "-p", help="Who paid (defaults to you)"
    ),
    split: str = typer.Option(
        "dynamic", "--split", help="equal, percentage, fixed or dynamic"
    ),
    with_: list[str] | None = typer.Option(
        None, "--with", "-w", help="Participant for equal/dynamic splits (repeatable)"
    ),
    item: list[str] | None = typer.Option(
        None, "--item", "-i", help="email=value for percentage/fixed splits (repeatable)"
    ),
    category: str = typer.Option("Uncategorized", "--category", "-c"),
    notes: str | None = typer.Option(None, "--notes"),
):
    """Record a shared expense."""
    with open_service() as service:
        currency = service.settings.currency_code
        if split not in SPLIT_TYPES:
            raise LedgerValidationError(
                f"Unknown split type '{split}'. Use one of: {', '.join(SPLIT_TYPES)}"
            )
        expense = service.add_expense(
            list_id,
            description=description,
            amount=amount,
            paid_by_email=paid_by or service.current_participant(),
            split_type=split,  # type: ignore[arg-type]
            split_between_emails=with_ or None,
            split_items=parse_split_items(item or []),
            category_name=category,
            notes=notes,
        )
        console.print(
            f"\n[bold green]✓ Added '{expense.description}'[/bold green] "
            f"{format_money(expense.amount, currency_code=currency)} "
            f"[dim]({expense.id})[/dim]"
        )


@app.command()
def expenses(list_id: str = typer.Argument(..., help="List ID")):
    """Show the expenses of a list."""
    with open_service() as service:
        currency = service.settings.currency_code
        items = service.get_expenses(list_id)
        if not items:
            console.print("[yellow]No expenses yet.[/yellow]")
            return

        table = Table(title="Expenses", show_header=True, header_style="bold magenta")
        table.add_column("Date", style="dim", width=10)
        table.add_column("Description", style="cyan", width=30)
        table.add_column("Amount", justify="right", width=12)
        table.add_column("Paid by")
        table.add_column("Split", style="yellow")
        table.add_column("Category")
        table.add_column("ID", style="dim")

        for expense in items:
            desc = expense.description
            table.add_row(
                f"{expense.date:%Y-%m-%d}",
                desc[:30] + "..." if len(desc) > 30 else desc,
                format_money(expense.amount, currency_code=currency),
                expense.paid_by_email,
                expense.split_type,
                expense.category_name,
                expense.id,
            )

        console.print(table)
        total = service.get_list_total(list_id)
        console.print(f"\n  Total spent: {format_money(total, currency_code=currency)}")


@app.command("delete-expense")
def delete_expense(
    list_id: str = typer.Argument(..., help="List ID"),
    expense_id: str = typer.Argument(..., help="Expense ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Delete an expense."""
    with open_service() as service:
        if not yes and not confirm_action(f"Delete expense {expense_id}?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return
        service.delete_expense(list_id, expense_id)
        console.print("\n[bold green]✓ Expense deleted[/bold green]")


# ============================================================================
# Balances and settlements
# ============================================================================


@app.command()
def balances(
    list_id: str = typer.Argument(..., help="List ID"),
    raw: bool = typer.Option(
        False, "--raw", help="Ignore confirmed settlements (expenses only)"
    ),
):
    """Show each member's net balance."""
    with open_service() as service:
        currency = service.settings.currency_code
        result = (
            service.get_balances(list_id) if raw else service.get_adjusted_balances(list_id)
        )

        table = Table(
            title="Individual Balances", show_header=True, header_style="bold magenta"
        )
        table.add_column("Participant", style="cyan")
        table.add_column("Balance", justify="right", width=14)
        table.add_column("", style="dim")
        for email, balance in sorted(result.items(), key=lambda x: -x[1]):
            if balance > 0.005:
                note = "is owed"
            elif balance < -0.005:
                note = "owes"
            else:
                note = "settled"
            table.add_row(email, format_money(balance, currency_code=currency), note)
        console.print(table)


@app.command()
def debts(list_id: str = typer.Argument(..., help="List ID")):
    """Show the fewest payments that would settle everyone up."""
    with open_service() as service:
        suggested = service.suggest_debts(list_id)
        if not suggested:
            console.print("\n[bold green]✓ Everyone is settled up[/bold green]")
            return
        console.print("\n[bold]Suggested payments:[/bold]")
        for debt in suggested:
            console.print(f"  {format_debt(debt, service.settings.currency_code)}")


@app.command()
def settle(
    list_id: str = typer.Argument(..., help="List ID"),
    to: str | None = typer.Option(None, "--to", help="Who you paid"),
    amount: float | None = typer.Option(None, "--amount", help="How much you paid"),
    description: str = typer.Option("Debt settlement", "--description", "-d"),
):
    """Record a payment you made. The recipient must confirm it."""
    with open_service() as service:
        currency = service.settings.currency_code
        if to and amount is not None:
            settlement = service.record_settlement(
                list_id, to, amount, description=description
            )
        else:
            me = service.current_participant()
            mine = [
                d
                for d in service.suggest_debts(list_id)
                if d.from_email == me
                and not service.has_open_settlement(
                    list_id, d.from_email, d.to_email, d.amount
                )
            ]
            idx = select_debt_interactive(mine, currency)
            if idx is None:
                console.print("[yellow]No payment selected.[/yellow]")
                return
            settlement = service.settle_debt(list_id, mine[idx], description=description)

        console.print(
            f"\n[bold green]✓ Recorded payment of "
            f"{format_money(settlement.amount, currency_code=currency)} "
            f"to {settlement.to_email}[/bold green]"
        )
        console.print("[dim]The recipient will need to confirm it.[/dim]")


@app.command()
def received(
    list_id: str = typer.Argument(..., help="List ID"),
    from_email: str = typer.Argument(..., help="Who paid you"),
    amount: float = typer.Argument(..., help="How much you received"),
    description: str = typer.Option(
        "Payment received outside ChipIn", "--description", "-d"
    ),
):
    """Record a payment you received outside the app (confirmed immediately)."""
    with open_service() as service:
        currency = service.settings.currency_code
        settlement = service.record_received_payment(
            list_id, from_email, amount, description=description
        )
        console.print(
            f"\n[bold green]✓ Recorded "
            f"{format_money(settlement.amount, currency_code=currency)} received from {settlement.from_email}[/bold green]"
        )


@app.command()
def settlements(
    list_id: str = typer.Argument(..., help="List ID"),
    status: str | None = typer.Option(
        None, "--status", help="pending, confirmed or rejected"
    ),
):
    """Show the settlement history of a list."""
    with open_service() as service:
        currency = service.settings.currency_code
        if status not in (None, "pending", "confirmed", "rejected"):
            raise LedgerValidationError(f"Unknown status '{status}'")
        items = service.get_settlements(list_id, status)  # type: ignore[arg-type]
        if not items:
            console.print("[yellow]No settlements.[/yellow]")
            return

        colors = {"pending": "yellow", "confirmed": "green", "rejected": "red"}
        table = Table(title="Settlements", show_header=True, header_style="bold magenta")
        table.add_column("Date", style="dim", width=10)
        table.add_column("From")
        table.add_column("To")
        table.add_column("Amount", justify="right", width=12)
        table.add_column("Status")
        table.add_column("ID", style="dim")
        for s in items:
            color = colors[s.status]
            label = s.status.capitalize() + (" (external)" if s.is_external else "")
            table.add_row(
                f"{s.date:%Y-%m-%d}",
                s.from_email,
                s.to_email,
                format_money(s.amount, currency_code=currency),
                f"[{color}]{label}[/{color}]",
                s.id,
            )
        console.print(table)


def _transition(list_id: str, settlement_id: str | None, confirm: bool):
    with open_service() as service:
        currency = service.settings.currency_code
        if settlement_id is None:
            me = service.current_participant()
            waiting = [
                s for s in service.get_settlements(list_id, "pending") if s.to_email == me
            ]
            idx = select_settlement_interactive(waiting, currency)
            if idx is None:
                console.print("[yellow]No settlement selected.[/yellow]")
                return
            settlement_id = waiting[idx].id

        if confirm:
            settlement = service.confirm_settlement(list_id, settlement_id)
        else:
            settlement = service.reject_settlement(list_id, settlement_id)

        console.print(
            f"\n[bold green]✓ Settlement {settlement.status}[/bold green] "
            f"({settlement.from_email} → {settlement.to_email}, "
            f"{format_money(settlement.amount, currency_code=currency)})"
        )


@app.command()
def confirm(
    list_id: str = typer.Argument(..., help="List ID"),
    settlement_id: str | None = typer.Argument(None, help="Settlement ID"),
):
    """Confirm a payment someone made to you."""
    _transition(list_id, settlement_id, confirm=True)


@app.command()
def reject(
    list_id: str = typer.Argument(..., help="List ID"),
    settlement_id: str | None = typer.Argument(None, help="Settlement ID"),
):
    """Reject a payment someone claims to have made to you."""
    _transition(list_id, settlement_id, confirm=False)


if __name__ == "__main__":
    app()

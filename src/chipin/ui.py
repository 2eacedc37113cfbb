"""Interactive UI components for choosing participants and debts."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import Debt, Settlement
from .simplifier import currency_symbol, format_debt

logger = logging.getLogger(__name__)


class ParticipantCompleter(Completer):
    """Fuzzy search completer for list participants."""

    def __init__(self, emails: list[str]):
        """Initialize the completer with the list members."""
        self.emails = emails

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for email in self.emails:
            if not query or self._fuzzy_match(query, email):
                yield Completion(
                    text=email,
                    start_position=-len(document.text),
                    display=email,
                )

    def _fuzzy_match(self, query: str, text: str) -> bool:
        """
        Fuzzy match: all characters in query must appear in order in text.

        Example:
            query="bob" matches "bob@example.com"
            query="aex" matches "alex@example.com"
        """
        query_idx = 0
        for char in text:
            if query_idx < len(query) and char == query[query_idx]:
                query_idx += 1
        return query_idx == len(query)


def select_participant_interactive(emails: list[str], prompt: str) -> str | None:
    """
    Interactive participant selection with fuzzy search.

    Args:
        emails: Members to choose from
        prompt: What the participant is being chosen for

    Returns:
        Selected email, or None to skip
    """
    print(f"\n👤 {prompt}")
    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    completer = ParticipantCompleter(emails)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt("Participant: ", complete_while_typing=True)

            if not result:
                return None

            selected = result.lower().strip()
            if selected in emails:
                logger.info(f"User selected participant: {selected}")
                return selected

            print("❌ Not a member of this list. Press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def _select_index(count: int, noun: str) -> int | None:
    try:
        response = input(f"Select {noun} [1-{count}, or q to quit]: ").strip().lower()

        if response in ("q", "quit", ""):
            return None

        selection = int(response) - 1

        if 0 <= selection < count:
            return selection
        else:
            print("❌ Invalid selection")
            return None

    except (ValueError, KeyboardInterrupt, EOFError):
        print("\n⏭️  Cancelled")
        return None


def select_debt_interactive(debts: list[Debt], currency_code: str = "USD") -> int | None:
    """
    Interactive debt selection.

    Args:
        debts: Suggested payments
        currency_code: Currency used for display

    Returns:
        Index of selected debt (0-based), or None to cancel
    """
    if not debts:
        print("\n✅ Everyone is settled up")
        return None

    print("\n💸 Suggested payments:\n")
    for idx, debt in enumerate(debts):
        print(f"  [{idx + 1}] {format_debt(debt, currency_code)}")
    print()

    return _select_index(len(debts), "payment")


def select_settlement_interactive(
    settlements: list[Settlement], currency_code: str = "USD"
) -> int | None:
    """
    Interactive selection among settlements awaiting confirmation.

    Returns:
        Index of selected settlement (0-based), or None to cancel
    """
    if not settlements:
        print("\n⚠️  No settlements waiting for you")
        return None

    symbol = currency_symbol(currency_code)
    print("\n📅 Pending settlements:\n")
    for idx, settlement in enumerate(settlements):
        date_str = settlement.date.strftime("%Y-%m-%d")
        print(f"  [{idx + 1}] {date_str}  {settlement.from_email} paid you")
        print(f"      Amount: {symbol}{settlement.amount:,.2f}")
        print(f"      Note: {settlement.description}")
        print()

    return _select_index(len(settlements), "settlement")


def confirm_action(message: str) -> bool:
    """Simple yes/no confirmation."""
    response = input(f"   {message} [y/N] ").strip().lower()
    return response in ("y", "yes")

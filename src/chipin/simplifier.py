"""Debt simplification: reduce net balances to a small set of payments."""

import logging

from .models import Debt

logger = logging.getLogger(__name__)

# Amounts at or below this are treated as settled rounding noise
NOISE_THRESHOLD = 0.01


def simplify_debts(balances: dict[str, float]) -> list[Debt]:
    """
    Greedily match the largest debtor with the largest creditor.

    Steps:
    1. Split participants into debtors (balance < 0) and creditors (balance > 0).
       Participants at exactly zero are ignored.
    2. Sort both descending by amount, ties by email so output is deterministic.
    3. Settle min(debtor, creditor) for the current pair and emit a Debt when
       it exceeds NOISE_THRESHOLD.
    4. Advance past any party whose remainder falls below NOISE_THRESHOLD.

    Args:
        balances: Mapping of participant email to net balance

    Returns:
        Suggested payments
    """
    debtors: list[tuple[str, float]] = []
    creditors: list[tuple[str, float]] = []

    for email, balance in balances.items():
        if balance < 0:
            debtors.append((email, -balance))
        elif balance > 0:
            creditors.append((email, balance))

    debtors.sort(key=lambda x: (-x[1], x[0]))
    creditors.sort(key=lambda x: (-x[1], x[0]))

    debts: list[Debt] = []
    i, j = 0, 0

    while i < len(debtors) and j < len(creditors):
        debtor_email, owes = debtors[i]
        creditor_email, owed = creditors[j]

        amount = min(owes, owed)
        if amount > NOISE_THRESHOLD:
            debts.append(
                Debt(from_email=debtor_email, to_email=creditor_email, amount=amount)
            )

        remaining_owes = owes - amount
        remaining_owed = owed - amount

        if remaining_owes < NOISE_THRESHOLD:
            i += 1
        else:
            debtors[i] = (debtor_email, remaining_owes)

        if remaining_owed < NOISE_THRESHOLD:
            j += 1
        else:
            creditors[j] = (creditor_email, remaining_owed)

    logger.debug(
        f"Simplified {len(debtors)} debtors and {len(creditors)} creditors "
        f"into {len(debts)} payments"
    )

    return debts


def debts_for_participant(debts: list[Debt], email: str) -> list[Debt]:
    """Debts where the participant pays or gets paid."""
    return [debt for debt in debts if email in (debt.from_email, debt.to_email)]


def currency_symbol(currency_code: str = "USD") -> str:
    """Prefix used when printing amounts: "$" for USD, else the ISO code."""
    return "$" if currency_code == "USD" else f"{currency_code} "


def format_debt(debt: Debt, currency_code: str = "USD") -> str:
    """Format a debt as a human-readable sentence."""
    symbol = currency_symbol(currency_code)
    return f"{debt.from_email} pays {symbol}{debt.amount:,.2f} to {debt.to_email}"

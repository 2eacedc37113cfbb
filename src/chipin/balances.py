"""Core balance computation for expense lists.

Net balance semantics: positive means the participant is owed money,
negative means the participant owes money.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable

from .models import Expense, Settlement

logger = logging.getLogger(__name__)


def compute_balances(expenses: Iterable[Expense]) -> dict[str, float]:
    """
    Fold expenses into net per-participant balances.

    The payer is credited the full amount, then participants are debited
    according to the split type:
    - equal / dynamic: amount / len(split_between_emails) each
    - percentage: amount * value / 100 per split item
    - fixed: value per split item

    An expense with no split participants or items only credits the payer.

    Args:
        expenses: Expenses to fold, assumed validated

    Returns:
        Mapping of participant email to net balance
    """
    balances: defaultdict[str, float] = defaultdict(float)

    for expense in expenses:
        amount = expense.amount
        balances[expense.paid_by_email] += amount

        if expense.split_type in ("equal", "dynamic"):
            split_between = expense.split_between_emails
            if split_between:
                share = amount / len(split_between)
                for email in split_between:
                    balances[email] -= share
            else:
                logger.debug(f"Expense {expense.id} has no split participants")

        elif expense.split_type == "percentage":
            for item in expense.split_items:
                balances[item.email] -= amount * (item.value / 100.0)

        elif expense.split_type == "fixed":
            for item in expense.split_items:
                balances[item.email] -= item.value

    return dict(balances)


def compute_adjusted_balances(
    expenses: Iterable[Expense], settlements: Iterable[Settlement]
) -> dict[str, float]:
    """
    Compute balances and apply confirmed settlements on top.

    A confirmed settlement credits the debtor (from) and debits the creditor
    (to), moving both toward zero. Pending and rejected settlements are ignored.

    Args:
        expenses: Expenses of the list
        settlements: Settlements of the list in any status

    Returns:
        Mapping of participant email to adjusted net balance
    """
    adjusted = compute_balances(expenses)

    for settlement in settlements:
        if settlement.status != "confirmed":
            continue
        adjusted[settlement.from_email] = (
            adjusted.get(settlement.from_email, 0.0) + settlement.amount
        )
        adjusted[settlement.to_email] = (
            adjusted.get(settlement.to_email, 0.0) - settlement.amount
        )

    return adjusted


def compute_list_total(expenses: Iterable[Expense]) -> float:
    """Total amount spent in a list, computed from the expenses themselves."""
    return sum(expense.amount for expense in expenses)


def balance_for(balances: dict[str, float], email: str) -> float:
    """Balance of one participant, zero if they have no activity."""
    return balances.get(email, 0.0)


def balances_for_members(
    balances: dict[str, float], members: Iterable[str]
) -> dict[str, float]:
    """
    Report a balance for every list member.

    Members without activity appear with 0. Participants that still carry a
    balance but are no longer members (e.g. removed from the list) are kept
    so that the totals stay consistent.
    """
    report = {email: balances.get(email, 0.0) for email in members}
    for email, balance in balances.items():
        report.setdefault(email, balance)
    return report

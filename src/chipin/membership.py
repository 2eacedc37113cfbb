"""Keep dynamic-split expenses consistent with list membership.

All functions are pure: they return updated copies and never touch storage.
The storage layer calls them inside the same transaction as the membership
change.
"""

import logging
from collections.abc import Iterable

from .models import Expense, SplitItem

logger = logging.getLogger(__name__)


def _equal_percentages(items: list[SplitItem]) -> list[SplitItem]:
    """Reset every item to an equal share of 100, discarding custom values."""
    if not items:
        return []
    share = 100.0 / len(items)
    return [item.model_copy(update={"value": share}) for item in items]


def add_participant(expense: Expense, email: str) -> Expense | None:
    """
    Add a participant to a dynamic expense.

    If the expense carries percentage split items, an item is added for the
    new participant and all items are redistributed at 100 / count.

    Args:
        expense: The expense to adjust
        email: Normalized email of the new participant

    Returns:
        The adjusted expense, or None if the expense is unaffected
    """
    if expense.split_type != "dynamic":
        return None
    if email in expense.split_between_emails:
        return None

    update: dict = {"split_between_emails": [*expense.split_between_emails, email]}

    if expense.has_percentage_items:
        items = list(expense.split_items)
        if not any(item.email == email for item in items):
            items.append(SplitItem(email=email, value=0.0))
        update["split_items"] = _equal_percentages(items)

    return expense.model_copy(update=update)


def remove_participant(
    expense: Expense, email: str, owner_email: str
) -> Expense | None:
    """
    Remove a participant from a dynamic expense.

    The participant's percentage item is dropped and the remaining items are
    redistributed at 100 / remaining. If the participant paid for the
    expense, the list owner becomes the payer. Removing the last participant
    leaves an empty split set.

    Args:
        expense: The expense to adjust
        email: Normalized email of the removed participant
        owner_email: The list owner, who inherits orphaned payments

    Returns:
        The adjusted expense, or None if the expense is unaffected
    """
    if expense.split_type != "dynamic":
        return None

    update: dict = {}

    if email in expense.split_between_emails:
        update["split_between_emails"] = [
            e for e in expense.split_between_emails if e != email
        ]
        if expense.has_percentage_items:
            remaining = [item for item in expense.split_items if item.email != email]
            update["split_items"] = _equal_percentages(remaining)

    if expense.paid_by_email == email:
        update["paid_by_email"] = owner_email

    if not update:
        return None

    adjusted = expense.model_copy(update=update)
    if not adjusted.split_between_emails:
        logger.warning(f"Expense {expense.id} has no split participants left")
    return adjusted


def adjust_for_added_participant(
    expenses: Iterable[Expense], email: str
) -> list[Expense]:
    """Return the adjusted copies of every dynamic expense affected by an addition."""
    adjusted = []
    for expense in expenses:
        updated = add_participant(expense, email)
        if updated is not None:
            adjusted.append(updated)
    logger.info(f"Added {email} to {len(adjusted)} dynamic expenses")
    return adjusted


def adjust_for_removed_participant(
    expenses: Iterable[Expense], email: str, owner_email: str
) -> list[Expense]:
    """Return the adjusted copies of every dynamic expense affected by a removal."""
    adjusted = []
    for expense in expenses:
        updated = remove_participant(expense, email, owner_email)
        if updated is not None:
            adjusted.append(updated)
    logger.info(f"Removed {email} from {len(adjusted)} dynamic expenses")
    return adjusted

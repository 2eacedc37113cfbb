"""Validation predicates for ledger records.

Predicates return booleans so callers can check validity before running
balance or debt computations. The ensure_* helpers raise
LedgerValidationError for the service layer.
"""

import re

from .exceptions import LedgerValidationError
from .models import EXPENSE_CATEGORIES, Expense, Settlement, SplitItem

PERCENTAGE_TOLERANCE = 0.1
FIXED_AMOUNT_TOLERANCE = 0.01

_EMAIL_RE = re.compile(r"[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}")


def normalize_email(email: str) -> str:
    """
    Normalize an email address for use as a participant key.

    Args:
        email: The raw email address

    Returns:
        Normalized email (lowercase, stripped)
    """
    return email.lower().strip()


def is_valid_email(email: str) -> bool:
    """Check that an email address has a plausible shape."""
    return _EMAIL_RE.fullmatch(email.strip()) is not None


def validate_percentages(split_items: list[SplitItem]) -> bool:
    """Percentages must sum to 100 within PERCENTAGE_TOLERANCE."""
    total = sum(item.value for item in split_items)
    return abs(total - 100.0) < PERCENTAGE_TOLERANCE


def validate_fixed_amounts(split_items: list[SplitItem], amount: float) -> bool:
    """Fixed amounts must sum to the expense amount within FIXED_AMOUNT_TOLERANCE."""
    total = sum(item.value for item in split_items)
    return abs(total - amount) < FIXED_AMOUNT_TOLERANCE


def expense_errors(expense: Expense) -> list[str]:
    """
    Collect every validation problem with an expense.

    Args:
        expense: The expense to check

    Returns:
        Human-readable problems, empty if the expense is valid
    """
    errors = []

    if not expense.description.strip():
        errors.append("Description must not be empty")
    if not expense.amount > 0:
        errors.append(f"Amount must be positive, got {expense.amount}")
    if not expense.paid_by_email.strip():
        errors.append("Payer must not be empty")
    if expense.category_name not in EXPENSE_CATEGORIES:
        errors.append(f"Unknown category '{expense.category_name}'")

    if expense.split_type in ("equal", "dynamic"):
        if not expense.split_between_emails:
            errors.append("Select at least one participant to split between")
        if len(set(expense.split_between_emails)) != len(
            expense.split_between_emails
        ):
            errors.append("Split participants must be unique")
        if expense.split_type == "dynamic" and expense.split_items:
            if not validate_percentages(expense.split_items):
                errors.append("Dynamic percentage items must sum to 100")
    elif expense.split_type == "percentage":
        if not expense.split_items:
            errors.append("Percentage split requires split items")
        elif not validate_percentages(expense.split_items):
            total = sum(item.value for item in expense.split_items)
            errors.append(f"Percentages must sum to 100, got {total:g}")
    elif expense.split_type == "fixed":
        if not expense.split_items:
            errors.append("Fixed split requires split items")
        elif not validate_fixed_amounts(expense.split_items, expense.amount):
            total = sum(item.value for item in expense.split_items)
            errors.append(
                f"Fixed amounts must sum to the total {expense.amount:.2f}, "
                f"got {total:.2f}"
            )

    return errors


def is_valid_expense(expense: Expense) -> bool:
    """Check whether an expense is well formed."""
    return not expense_errors(expense)


def is_valid_settlement(settlement: Settlement) -> bool:
    """Check whether a settlement is well formed."""
    return (
        settlement.amount > 0
        and bool(settlement.from_email.strip())
        and bool(settlement.to_email.strip())
        and settlement.from_email != settlement.to_email
    )


def ensure_valid_expense(expense: Expense) -> None:
    """Raise LedgerValidationError if the expense is malformed."""
    errors = expense_errors(expense)
    if errors:
        raise LedgerValidationError("Invalid expense: " + "; ".join(errors))


def ensure_valid_settlement(settlement: Settlement) -> None:
    """Raise LedgerValidationError if the settlement is malformed."""
    if not is_valid_settlement(settlement):
        raise LedgerValidationError(
            f"Invalid settlement: {settlement.from_email} -> "
            f"{settlement.to_email} for {settlement.amount}"
        )

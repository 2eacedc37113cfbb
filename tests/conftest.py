"""Shared fixtures for ChipIn tests."""

from datetime import datetime

import pytest

from chipin.config import Settings
from chipin.db import Database
from chipin.identity import StaticIdentity
from chipin.models import Expense, ExpenseList, SplitItem
from chipin.service import LedgerService

ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"
DAVE = "dave@example.com"


def make_expense(
    amount: float,
    paid_by: str,
    split_type: str = "equal",
    split_between: list[str] | None = None,
    items: list[tuple[str, float]] | None = None,
    description: str = "Test expense",
) -> Expense:
    """Create an Expense for testing."""
    return Expense(
        description=description,
        amount=amount,
        date=datetime(2025, 3, 1, 12, 0, 0),
        paid_by_email=paid_by,
        split_type=split_type,
        split_between_emails=split_between or [],
        split_items=[SplitItem(email=email, value=value) for email, value in items or []],
        created_by_email=paid_by,
    )


@pytest.fixture
def settings(tmp_path):
    """Create settings pointing at a temporary database."""
    return Settings(database_path=tmp_path / "chipin.db", user_email=ALICE)


@pytest.fixture
def db(settings):
    """Create a temporary database."""
    database = Database(settings.database_path)
    yield database
    database.close()


@pytest.fixture
def trip(db):
    """A list owned by Alice and shared with Bob and Carol."""
    expense_list = ExpenseList(name="Trip", owner_email=ALICE, shared_emails=[BOB, CAROL])
    db.save_expense_list(expense_list)
    return expense_list


@pytest.fixture
def service_as(settings, db):
    """Factory for a service acting as a given participant."""

    def _make(email: str | None) -> LedgerService:
        return LedgerService(settings, db, StaticIdentity(email))

    return _make

"""Pydantic domain models for ChipIn."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

SplitType = Literal["equal", "percentage", "fixed", "dynamic"]
SettlementStatus = Literal["pending", "confirmed", "rejected"]
ActivityAction = Literal["share", "remove_access"]

SPLIT_TYPES: tuple[SplitType, ...] = ("equal", "percentage", "fixed", "dynamic")

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transportation",
    "Housing",
    "Utilities",
    "Entertainment",
    "Shopping",
    "Health",
    "Travel",
    "Education",
    "Personal",
    "Other",
    "Uncategorized",
)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


# ============================================================================
# Lists
# ============================================================================


class ExpenseList(BaseModel):
    """A shared expense list.

    The owner is always a member and is never stored in shared_emails.
    """

    id: str = Field(default_factory=new_id)
    name: str
    owner_email: str
    shared_emails: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def members(self) -> list[str]:
        """Owner followed by the shared participants."""
        return [self.owner_email] + [
            email for email in self.shared_emails if email != self.owner_email
        ]

    def is_member(self, email: str) -> bool:
        return email in self.members


# ============================================================================
# Expenses
# ============================================================================


class SplitItem(BaseModel):
    """A participant's custom share of an expense.

    value is percentage points for percentage splits and a currency amount
    for fixed splits.
    """

    id: str = Field(default_factory=new_id)
    email: str
    value: float


class Expense(BaseModel):
    """A shared expense paid by one participant."""

    id: str = Field(default_factory=new_id)
    description: str
    amount: float
    date: datetime = Field(default_factory=datetime.now)
    paid_by_email: str
    split_type: SplitType = "dynamic"
    split_between_emails: list[str] = Field(default_factory=list)
    split_items: list[SplitItem] = Field(default_factory=list)
    category_name: str = "Uncategorized"
    notes: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    created_by_email: str

    @property
    def has_percentage_items(self) -> bool:
        """True if a dynamic expense also carries percentage split items."""
        return bool(self.split_items)


# ============================================================================
# Settlements
# ============================================================================


class Settlement(BaseModel):
    """A recorded real-world payment from a debtor to a creditor."""

    id: str = Field(default_factory=new_id)
    from_email: str  # debtor
    to_email: str  # creditor
    amount: float
    date: datetime = Field(default_factory=datetime.now)
    description: str = "Debt settlement"
    list_id: str
    status: SettlementStatus = "pending"
    created_by_email: str
    confirmed_by_email: str | None = None
    confirmed_date: datetime | None = None

    @property
    def is_external(self) -> bool:
        """Recorded and confirmed by the recipient for a payment made outside the app."""
        return (
            self.status == "confirmed"
            and self.confirmed_by_email is not None
            and self.created_by_email == self.confirmed_by_email
            and self.to_email == self.created_by_email
        )


class Debt(BaseModel):
    """A suggested payment derived from balances. Never persisted."""

    from_email: str
    to_email: str
    amount: float


# ============================================================================
# Audit log
# ============================================================================


class ActivityLogEntry(BaseModel):
    """An audit record written together with a membership change."""

    id: int | None = None
    list_id: str
    action: ActivityAction
    actor_email: str
    subject_email: str
    created_at: datetime = Field(default_factory=datetime.now)

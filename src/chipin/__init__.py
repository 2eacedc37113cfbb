"""ChipIn - Shared expense lists, balances and debt simplification."""

__version__ = "0.1.0"

from .balances import compute_adjusted_balances, compute_balances, compute_list_total
from .config import Settings, load_settings
from .db import Database
from .membership import adjust_for_added_participant, adjust_for_removed_participant
from .models import (
    ActivityLogEntry,
    Debt,
    Expense,
    ExpenseList,
    Settlement,
    SplitItem,
)
from .service import LedgerService
from .simplifier import simplify_debts

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "ActivityLogEntry",
    "Debt",
    "Expense",
    "ExpenseList",
    "Settlement",
    "SplitItem",
    "compute_balances",
    "compute_adjusted_balances",
    "compute_list_total",
    "simplify_debts",
    "adjust_for_added_participant",
    "adjust_for_removed_participant",
    "LedgerService",
]

"""Service layer that composes storage, identity and the ledger core.

Every operation acts on behalf of the current participant. Owners manage
access, members record expenses, debtors record payments and recipients
confirm them.
"""

import logging
from datetime import datetime

from .balances import (
    balances_for_members,
    compute_adjusted_balances,
    compute_balances,
    compute_list_total,
)
from .config import Settings
from .db import Database
from .exceptions import (
    LedgerValidationError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
)
from .identity import IdentityProvider, SettingsIdentity
from .models import (
    ActivityLogEntry,
    Debt,
    Expense,
    ExpenseList,
    Settlement,
    SettlementStatus,
    SplitItem,
    SplitType,
)
from .simplifier import NOISE_THRESHOLD, simplify_debts
from .validation import (
    ensure_valid_expense,
    ensure_valid_settlement,
    is_valid_email,
    normalize_email,
)

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for managing shared expense lists on behalf of one participant."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        identity: IdentityProvider | None = None,
    ):
        """Initialize the ledger service."""
        self.settings = settings
        self.db = database
        self.identity = identity or SettingsIdentity(settings)

    # ========================================================================
    # Helpers
    # ========================================================================

    def current_participant(self) -> str:
        """The acting participant, or NotAuthenticatedError."""
        email = self.identity.current_participant()
        if not email:
            raise NotAuthenticatedError()
        return email

    def _get_list(self, list_id: str) -> ExpenseList:
        expense_list = self.db.get_expense_list(list_id)
        if expense_list is None:
            raise NotFoundError(f"List {list_id} not found")
        return expense_list

    def _get_member_list(self, list_id: str) -> tuple[ExpenseList, str]:
        """Load a list and check that the current participant belongs to it."""
        actor = self.current_participant()
        expense_list = self._get_list(list_id)
        if not expense_list.is_member(actor):
            raise PermissionDeniedError(
                f"You don't have access to list '{expense_list.name}'"
            )
        return expense_list, actor

    @staticmethod
    def _normalize_valid_email(email: str) -> str:
        if not is_valid_email(email):
            raise LedgerValidationError(f"Invalid email format: '{email}'")
        return normalize_email(email)

    # ========================================================================
    # Lists and membership
    # ========================================================================

    def create_list(self, name: str, shared_emails: list[str] | None = None) -> ExpenseList:
        """
        Create a new expense list owned by the current participant.

        Args:
            name: Display name of the list
            shared_emails: Participants to share with from the start

        Returns:
            The created list
        """
        owner = self.current_participant()
        if not name.strip():
            raise LedgerValidationError("List name must not be empty")

        shared = [self._normalize_valid_email(email) for email in shared_emails or []]
        expense_list = ExpenseList(
            name=name.strip(),
            owner_email=owner,
            shared_emails=[email for email in dict.fromkeys(shared) if email != owner],
        )
        self.db.save_expense_list(expense_list)
        return expense_list

    def get_lists(self) -> list[ExpenseList]:
        """Lists the current participant owns or is shared on."""
        return self.db.get_lists_for_participant(self.current_participant())

    def get_list(self, list_id: str) -> ExpenseList:
        """Get a list the current participant belongs to."""
        expense_list, _ = self._get_member_list(list_id)
        return expense_list

    def share_list(self, list_id: str, email: str) -> list[Expense]:
        """
        Give a participant access to a list.

        Dynamic expenses are extended to the new participant in the same
        transaction.

        Returns:
            The dynamic expenses that were adjusted
        """
        actor = self.current_participant()
        normalized = self._normalize_valid_email(email)
        return self.db.update_membership(list_id, "add", normalized, actor)

    def remove_access(self, list_id: str, email: str) -> list[Expense]:
        """
        Revoke a participant's access to a list.

        Returns:
            The dynamic expenses that were adjusted
        """
        actor = self.current_participant()
        return self.db.update_membership(list_id, "remove", normalize_email(email), actor)

    def get_activity_log(self, list_id: str) -> list[ActivityLogEntry]:
        """Membership audit log of a list."""
        self._get_member_list(list_id)
        return self.db.get_activity_log(list_id)

    # ========================================================================
    # Expenses
    # ========================================================================

    def add_expense(
        self,
        list_id: str,
        description: str,
        amount: float,
        paid_by_email: str,
        split_type: SplitType = "dynamic",
        split_between_emails: list[str] | None = None,
        split_items: list[SplitItem] | None = None,
        category_name: str = "Uncategorized",
        notes: str | None = None,
        date: datetime | None = None,
    ) -> Expense:
        """
        Record a new expense in a list.

        Equal and dynamic splits default to every list member when no
        participants are given.

        Raises:
            LedgerValidationError: The expense is malformed or references
                someone outside the list
        """
        expense_list, actor = self._get_member_list(list_id)
        members = expense_list.members

        if split_type in ("equal", "dynamic") and not split_between_emails:
            split_between = list(members)
        else:
            split_between = [normalize_email(e) for e in split_between_emails or []]

        items = [
            item.model_copy(update={"email": normalize_email(item.email)})
            for item in split_items or []
        ]

        expense = Expense(
            description=description.strip(),
            amount=amount,
            date=date or datetime.now(),
            paid_by_email=normalize_email(paid_by_email),
            split_type=split_type,
            split_between_emails=split_between if split_type in ("equal", "dynamic") else [],
            split_items=items,
            category_name=category_name,
            notes=notes,
            created_by_email=actor,
        )
        ensure_valid_expense(expense)

        involved = {expense.paid_by_email, *expense.split_between_emails}
        involved.update(item.email for item in expense.split_items)
        outsiders = sorted(involved - set(members))
        if outsiders:
            raise LedgerValidationError(
                f"Not members of '{expense_list.name}': {', '.join(outsiders)}"
            )

        self.db.save_expense(list_id, expense)
        logger.info(
            f"Added expense '{expense.description}' ({expense.amount:.2f}, "
            f"{expense.split_type}) to list {list_id}"
        )
        return expense

    def get_expenses(self, list_id: str) -> list[Expense]:
        """Expenses of a list, newest first."""
        self._get_member_list(list_id)
        return self.db.load_expenses(list_id)

    def delete_expense(self, list_id: str, expense_id: str) -> None:
        """Delete an expense; balances follow on the next read."""
        self._get_member_list(list_id)
        self.db.delete_expense(list_id, expense_id)
        logger.info(f"Deleted expense {expense_id} from list {list_id}")

    def get_list_total(self, list_id: str) -> float:
        """Total spent in a list, computed from its expenses."""
        return compute_list_total(self.get_expenses(list_id))

    # ========================================================================
    # Balances and debts
    # ========================================================================

    def get_balances(self, list_id: str) -> dict[str, float]:
        """Raw balances from expenses only, one entry per member."""
        expense_list, _ = self._get_member_list(list_id)
        balances = compute_balances(self.db.load_expenses(list_id))
        return balances_for_members(balances, expense_list.members)

    def get_adjusted_balances(self, list_id: str) -> dict[str, float]:
        """Balances after confirmed settlements, one entry per member."""
        expense_list, _ = self._get_member_list(list_id)
        balances = compute_adjusted_balances(
            self.db.load_expenses(list_id), self.db.load_settlements(list_id)
        )
        return balances_for_members(balances, expense_list.members)

    def suggest_debts(self, list_id: str) -> list[Debt]:
        """Minimal set of payments that settles the adjusted balances."""
        return simplify_debts(self.get_adjusted_balances(list_id))

    # ========================================================================
    # Settlements
    # ========================================================================

    def get_settlements(
        self, list_id: str, status: SettlementStatus | None = None
    ) -> list[Settlement]:
        """Settlements of a list, optionally filtered by status."""
        self._get_member_list(list_id)
        settlements = self.db.load_settlements(list_id)
        if status:
            settlements = [s for s in settlements if s.status == status]
        return settlements

    def has_open_settlement(
        self, list_id: str, from_email: str, to_email: str, amount: float
    ) -> bool:
        """Whether a pending or confirmed settlement already covers this payment."""
        return any(
            s.from_email == from_email
            and s.to_email == to_email
            and abs(s.amount - amount) < NOISE_THRESHOLD
            and s.status in ("pending", "confirmed")
            for s in self.db.load_settlements(list_id)
        )

    def record_settlement(
        self,
        list_id: str,
        to_email: str,
        amount: float,
        description: str = "Debt settlement",
        date: datetime | None = None,
    ) -> Settlement:
        """
        Record that the current participant paid a creditor.

        The settlement is pending until the recipient confirms it. Repeat
        payments of the same amount are allowed; only settle_debt refuses
        to cover a suggested debt twice.
        """
        expense_list, actor = self._get_member_list(list_id)
        settlement = self._pending_settlement(
            list_id, actor, to_email, amount, description, date
        )
        return self._create_settlement(expense_list, settlement)

    def settle_debt(
        self, list_id: str, debt: Debt, description: str = "Debt settlement"
    ) -> Settlement:
        """
        Record payment of a suggested debt.

        Raises:
            PermissionDeniedError: The current participant is not the debtor
            DuplicateSettlementError: A pending or confirmed settlement
                already covers this debt
        """
        expense_list, actor = self._get_member_list(list_id)
        if debt.from_email != actor:
            raise PermissionDeniedError(
                "Only the person who owes money can record paying it"
            )
        settlement = self._pending_settlement(
            list_id, actor, debt.to_email, debt.amount, description, None
        )
        return self._create_settlement(expense_list, settlement, guard_duplicates=True)

    def record_received_payment(
        self,
        list_id: str,
        from_email: str,
        amount: float,
        description: str = "Payment received outside ChipIn",
        date: datetime | None = None,
    ) -> Settlement:
        """
        Record a payment the current participant received outside the app.

        Stored already confirmed by the recipient, so it affects balances
        immediately.
        """
        expense_list, actor = self._get_member_list(list_id)
        now = datetime.now()
        settlement = Settlement(
            from_email=normalize_email(from_email),
            to_email=actor,
            amount=amount,
            date=date or now,
            description=description,
            list_id=list_id,
            status="confirmed",
            created_by_email=actor,
            confirmed_by_email=actor,
            confirmed_date=now,
        )
        return self._create_settlement(expense_list, settlement)

    @staticmethod
    def _pending_settlement(
        list_id: str,
        actor: str,
        to_email: str,
        amount: float,
        description: str,
        date: datetime | None,
    ) -> Settlement:
        return Settlement(
            from_email=actor,
            to_email=normalize_email(to_email),
            amount=amount,
            date=date or datetime.now(),
            description=description,
            list_id=list_id,
            status="pending",
            created_by_email=actor,
        )

    def _create_settlement(
        self,
        expense_list: ExpenseList,
        settlement: Settlement,
        guard_duplicates: bool = False,
    ) -> Settlement:
        ensure_valid_settlement(settlement)

        for email in (settlement.from_email, settlement.to_email):
            if not expense_list.is_member(email):
                raise LedgerValidationError(
                    f"{email} is not a member of '{expense_list.name}'"
                )

        self.db.create_settlement(settlement, guard_duplicates=guard_duplicates)
        logger.info(
            f"Recorded {settlement.status} settlement {settlement.from_email} -> "
            f"{settlement.to_email} ({settlement.amount:.2f})"
        )
        return settlement

    def confirm_settlement(self, list_id: str, settlement_id: str) -> Settlement:
        """Confirm a pending settlement addressed to the current participant."""
        actor = self.current_participant()
        return self.db.transition_settlement(list_id, settlement_id, "confirmed", actor)

    def reject_settlement(self, list_id: str, settlement_id: str) -> Settlement:
        """Reject a pending settlement addressed to the current participant."""
        actor = self.current_participant()
        return self.db.transition_settlement(list_id, settlement_id, "rejected", actor)

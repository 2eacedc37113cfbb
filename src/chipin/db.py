"""SQLite storage for ChipIn lists, expenses and settlements."""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Literal

from .exceptions import (
    ConflictError,
    DuplicateSettlementError,
    LedgerValidationError,
    NotFoundError,
    PermissionDeniedError,
    SettlementAlreadyTransitionedError,
)
from .membership import adjust_for_added_participant, adjust_for_removed_participant
from .models import (
    ActivityLogEntry,
    Expense,
    ExpenseList,
    Settlement,
    SettlementStatus,
    SplitItem,
)
from .simplifier import NOISE_THRESHOLD

logger = logging.getLogger(__name__)

MembershipAction = Literal["add", "remove"]


class Database:
    """SQLite database manager.

    Every mutation that must be atomic runs inside transaction(), which takes
    the SQLite write lock up front (BEGIN IMMEDIATE) so reads made inside it
    are fresh and no other writer can interleave.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """Initialize database connection."""
        self.db_path = db_path
        # Autocommit mode: transactions are opened explicitly
        self.conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS expense_lists (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    owner_email TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """
            )

            # Shared participants; the owner is implicit and never stored here
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS list_members (
                    list_id TEXT NOT NULL REFERENCES expense_lists(id) ON DELETE CASCADE,
                    email TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (list_id, email)
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS expenses (
                    id TEXT PRIMARY KEY,
                    list_id TEXT NOT NULL REFERENCES expense_lists(id) ON DELETE CASCADE,
                    description TEXT NOT NULL,
                    amount REAL NOT NULL,
                    date TIMESTAMP NOT NULL,
                    paid_by_email TEXT NOT NULL,
                    split_type TEXT NOT NULL,
                    split_between_emails TEXT NOT NULL,
                    split_items TEXT NOT NULL,
                    category_name TEXT NOT NULL,
                    notes TEXT,
                    created_at TIMESTAMP NOT NULL,
                    created_by_email TEXT NOT NULL
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS settlements (
                    id TEXT PRIMARY KEY,
                    list_id TEXT NOT NULL REFERENCES expense_lists(id) ON DELETE CASCADE,
                    from_email TEXT NOT NULL,
                    to_email TEXT NOT NULL,
                    amount REAL NOT NULL,
                    date TIMESTAMP NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_by_email TEXT NOT NULL,
                    confirmed_by_email TEXT,
                    confirmed_date TIMESTAMP
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    list_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    actor_email TEXT NOT NULL,
                    subject_email TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """
            )

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_expenses_list ON expenses (list_id, split_type)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_settlements_list ON settlements (list_id)"
            )

    def close(self):
        """Close database connection."""
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run a block as one all-or-nothing write transaction.

        Commits on success and rolls back on any exception, which is re-raised.
        """
        cursor = self.conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
        except BaseException:
            cursor.execute("ROLLBACK")
            raise
        else:
            cursor.execute("COMMIT")

    # ========================================================================
    # Expense list operations
    # ========================================================================

    def save_expense_list(self, expense_list: ExpenseList) -> None:
        """Create an expense list with its shared participants."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO expense_lists (id, name, owner_email, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    expense_list.id,
                    expense_list.name,
                    expense_list.owner_email,
                    expense_list.created_at.isoformat(),
                ),
            )
            shared = [e for e in expense_list.shared_emails if e != expense_list.owner_email]
            for position, email in enumerate(dict.fromkeys(shared)):
                cursor.execute(
                    "INSERT INTO list_members (list_id, email, position) VALUES (?, ?, ?)",
                    (expense_list.id, email, position),
                )

        logger.info(f"Saved expense list {expense_list.id} ({expense_list.name})")

    def get_expense_list(self, list_id: str) -> ExpenseList | None:
        """Get an expense list by ID."""
        return self._read_expense_list(self.conn.cursor(), list_id)

    def get_lists_for_participant(self, email: str) -> list[ExpenseList]:
        """Get every list the participant owns or is shared on."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id FROM expense_lists
            WHERE owner_email = ?
               OR id IN (SELECT list_id FROM list_members WHERE email = ?)
            ORDER BY created_at DESC
            """,
            (email, email),
        )
        ids = [row["id"] for row in cursor.fetchall()]
        lists = []
        for list_id in ids:
            expense_list = self._read_expense_list(cursor, list_id)
            if expense_list:
                lists.append(expense_list)
        return lists

    def _read_expense_list(
        self, cursor: sqlite3.Cursor, list_id: str
    ) -> ExpenseList | None:
        cursor.execute(
            "SELECT id, name, owner_email, created_at FROM expense_lists WHERE id = ?",
            (list_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None

        cursor.execute(
            "SELECT email FROM list_members WHERE list_id = ? ORDER BY position",
            (list_id,),
        )
        shared = [member["email"] for member in cursor.fetchall()]

        return ExpenseList(
            id=row["id"],
            name=row["name"],
            owner_email=row["owner_email"],
            shared_emails=shared,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def update_membership(
        self,
        list_id: str,
        action: MembershipAction,
        email: str,
        actor_email: str,
    ) -> list[Expense]:
        """
        Share a list with a participant or revoke their access.

        The membership change, the dynamic expense adjustments and the audit
        log entry are one transaction. Affected expenses are queried and read
        inside that transaction, so adjustments never act on stale data.

        Args:
            list_id: The list to change
            action: "add" or "remove"
            email: Normalized email of the participant
            actor_email: Who is making the change; must own the list

        Returns:
            The dynamic expenses that were adjusted (empty if nothing changed)

        Raises:
            NotFoundError: List missing, or removing someone without access
            PermissionDeniedError: Actor does not own the list
            LedgerValidationError: Attempt to remove the owner
        """
        with self.transaction() as cursor:
            expense_list = self._read_expense_list(cursor, list_id)
            if expense_list is None:
                raise NotFoundError(f"List {list_id} not found")
            if expense_list.owner_email != actor_email:
                raise PermissionDeniedError(
                    f"Only the owner of '{expense_list.name}' can change who has access"
                )

            if action == "add":
                if expense_list.is_member(email):
                    logger.info(f"{email} already has access to list {list_id}")
                    return []
                cursor.execute(
                    """
                    INSERT INTO list_members (list_id, email, position)
                    VALUES (?, ?, (SELECT COALESCE(MAX(position), -1) + 1
                                   FROM list_members WHERE list_id = ?))
                    """,
                    (list_id, email, list_id),
                )
                adjusted = adjust_for_added_participant(
                    self._read_dynamic_expenses(cursor, list_id), email
                )
                log_action = "share"

            elif action == "remove":
                if email == expense_list.owner_email:
                    raise LedgerValidationError("The list owner cannot be removed")
                if email not in expense_list.shared_emails:
                    raise NotFoundError(f"{email} doesn't have access to this list")
                cursor.execute(
                    "DELETE FROM list_members WHERE list_id = ? AND email = ?",
                    (list_id, email),
                )
                adjusted = adjust_for_removed_participant(
                    self._read_dynamic_expenses(cursor, list_id),
                    email,
                    expense_list.owner_email,
                )
                log_action = "remove_access"

            else:
                raise ValueError(f"Unknown membership action: {action}")

            for expense in adjusted:
                self._write_expense(cursor, list_id, expense)

            self._insert_activity_log(
                cursor,
                ActivityLogEntry(
                    list_id=list_id,
                    action=log_action,
                    actor_email=actor_email,
                    subject_email=email,
                ),
            )

        logger.info(
            f"Membership {action} {email} on list {list_id}: "
            f"{len(adjusted)} dynamic expenses adjusted"
        )
        return adjusted

    # ========================================================================
    # Expense operations
    # ========================================================================

    def save_expense(self, list_id: str, expense: Expense) -> None:
        """Insert or replace an expense in a list."""
        with self.transaction() as cursor:
            self._require_list(cursor, list_id)
            self._write_expense(cursor, list_id, expense)

    def delete_expense(self, list_id: str, expense_id: str) -> None:
        """Delete an expense from a list."""
        with self.transaction() as cursor:
            cursor.execute(
                "DELETE FROM expenses WHERE id = ? AND list_id = ?",
                (expense_id, list_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense {expense_id} not found in list {list_id}")

    def get_expense(self, list_id: str, expense_id: str) -> Expense | None:
        """Get a single expense."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM expenses WHERE id = ? AND list_id = ?",
            (expense_id, list_id),
        )
        row = cursor.fetchone()
        return _row_to_expense(row) if row else None

    def load_expenses(self, list_id: str) -> list[Expense]:
        """Get all expenses of a list, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM expenses WHERE list_id = ? ORDER BY date DESC",
            (list_id,),
        )
        return [_row_to_expense(row) for row in cursor.fetchall()]

    def _read_dynamic_expenses(
        self, cursor: sqlite3.Cursor, list_id: str
    ) -> list[Expense]:
        cursor.execute(
            "SELECT * FROM expenses WHERE list_id = ? AND split_type = 'dynamic'",
            (list_id,),
        )
        return [_row_to_expense(row) for row in cursor.fetchall()]

    def _write_expense(
        self, cursor: sqlite3.Cursor, list_id: str, expense: Expense
    ) -> None:
        cursor.execute(
            """
            INSERT INTO expenses (
                id, list_id, description, amount, date, paid_by_email,
                split_type, split_between_emails, split_items, category_name,
                notes, created_at, created_by_email
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                description = excluded.description,
                amount = excluded.amount,
                date = excluded.date,
                paid_by_email = excluded.paid_by_email,
                split_type = excluded.split_type,
                split_between_emails = excluded.split_between_emails,
                split_items = excluded.split_items,
                category_name = excluded.category_name,
                notes = excluded.notes
            """,
            (
                expense.id,
                list_id,
                expense.description,
                expense.amount,
                expense.date.isoformat(),
                expense.paid_by_email,
                expense.split_type,
                json.dumps(expense.split_between_emails),
                json.dumps([item.model_dump() for item in expense.split_items]),
                expense.category_name,
                expense.notes,
                expense.created_at.isoformat(),
                expense.created_by_email,
            ),
        )

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def create_settlement(
        self, settlement: Settlement, guard_duplicates: bool = False
    ) -> None:
        """
        Save a new settlement.

        Args:
            settlement: The settlement to insert
            guard_duplicates: Refuse the insert when a pending or confirmed
                settlement between the same pair for the same amount exists.
                The check and the insert share one transaction.

        Raises:
            NotFoundError: List missing
            DuplicateSettlementError: guard_duplicates is set and a matching
                open settlement exists
        """
        with self.transaction() as cursor:
            self._require_list(cursor, settlement.list_id)
            if guard_duplicates:
                cursor.execute(
                    """
                    SELECT 1 FROM settlements
                    WHERE list_id = ? AND from_email = ? AND to_email = ?
                      AND status IN ('pending', 'confirmed')
                      AND ABS(amount - ?) < ?
                    LIMIT 1
                    """,
                    (
                        settlement.list_id,
                        settlement.from_email,
                        settlement.to_email,
                        settlement.amount,
                        NOISE_THRESHOLD,
                    ),
                )
                if cursor.fetchone() is not None:
                    raise DuplicateSettlementError(
                        "A pending or confirmed settlement for this debt already exists"
                    )
            cursor.execute(
                """
                INSERT INTO settlements (
                    id, list_id, from_email, to_email, amount, date, description,
                    status, created_by_email, confirmed_by_email, confirmed_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    settlement.id,
                    settlement.list_id,
                    settlement.from_email,
                    settlement.to_email,
                    settlement.amount,
                    settlement.date.isoformat(),
                    settlement.description,
                    settlement.status,
                    settlement.created_by_email,
                    settlement.confirmed_by_email,
                    settlement.confirmed_date.isoformat()
                    if settlement.confirmed_date
                    else None,
                ),
            )

    def get_settlement(self, list_id: str, settlement_id: str) -> Settlement | None:
        """Get a settlement by ID."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM settlements WHERE id = ? AND list_id = ?",
            (settlement_id, list_id),
        )
        row = cursor.fetchone()
        return _row_to_settlement(row) if row else None

    def load_settlements(self, list_id: str) -> list[Settlement]:
        """Get all settlements of a list, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM settlements WHERE list_id = ? ORDER BY date DESC",
            (list_id,),
        )
        return [_row_to_settlement(row) for row in cursor.fetchall()]

    def transition_settlement(
        self,
        list_id: str,
        settlement_id: str,
        new_status: SettlementStatus,
        actor_email: str,
    ) -> Settlement:
        """
        Confirm or reject a pending settlement.

        The status read, the recipient check and the conditional update run in
        one transaction; of two concurrent transitions exactly one succeeds.

        Raises:
            NotFoundError: Settlement missing
            PermissionDeniedError: Actor is not the recipient
            SettlementAlreadyTransitionedError: Settlement no longer pending
        """
        if new_status not in ("confirmed", "rejected"):
            raise LedgerValidationError(
                f"Settlements can only become confirmed or rejected, not {new_status}"
            )

        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM settlements WHERE id = ? AND list_id = ?",
                (settlement_id, list_id),
            )
            row = cursor.fetchone()
            if not row:
                raise NotFoundError(f"Settlement {settlement_id} not found")

            settlement = _row_to_settlement(row)
            if settlement.to_email != actor_email:
                verb = "confirm" if new_status == "confirmed" else "reject"
                raise PermissionDeniedError(
                    f"Only the recipient can {verb} the settlement"
                )
            if settlement.status != "pending":
                raise SettlementAlreadyTransitionedError(
                    settlement_id, settlement.status
                )

            now = datetime.now()
            cursor.execute(
                """
                UPDATE settlements
                SET status = ?, confirmed_by_email = ?, confirmed_date = ?
                WHERE id = ? AND status = 'pending'
                """,
                (new_status, actor_email, now.isoformat(), settlement_id),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"Settlement {settlement_id} changed while being {new_status}"
                )

        logger.info(f"Settlement {settlement_id} {new_status} by {actor_email}")

        return settlement.model_copy(
            update={
                "status": new_status,
                "confirmed_by_email": actor_email,
                "confirmed_date": now,
            }
        )

    # ========================================================================
    # Activity log operations
    # ========================================================================

    def get_activity_log(self, list_id: str) -> list[ActivityLogEntry]:
        """Get the membership audit log of a list, oldest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, list_id, action, actor_email, subject_email, created_at
            FROM activity_logs
            WHERE list_id = ?
            ORDER BY id
            """,
            (list_id,),
        )
        return [
            ActivityLogEntry(
                id=row["id"],
                list_id=row["list_id"],
                action=row["action"],
                actor_email=row["actor_email"],
                subject_email=row["subject_email"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    def _insert_activity_log(
        self, cursor: sqlite3.Cursor, entry: ActivityLogEntry
    ) -> None:
        cursor.execute(
            """
            INSERT INTO activity_logs (list_id, action, actor_email, subject_email, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                entry.list_id,
                entry.action,
                entry.actor_email,
                entry.subject_email,
                entry.created_at.isoformat(),
            ),
        )

    def _require_list(self, cursor: sqlite3.Cursor, list_id: str) -> None:
        cursor.execute("SELECT 1 FROM expense_lists WHERE id = ?", (list_id,))
        if cursor.fetchone() is None:
            raise NotFoundError(f"List {list_id} not found")


def _row_to_expense(row: sqlite3.Row) -> Expense:
    return Expense(
        id=row["id"],
        description=row["description"],
        amount=row["amount"],
        date=datetime.fromisoformat(row["date"]),
        paid_by_email=row["paid_by_email"],
        split_type=row["split_type"],
        split_between_emails=json.loads(row["split_between_emails"]),
        split_items=[SplitItem(**item) for item in json.loads(row["split_items"])],
        category_name=row["category_name"],
        notes=row["notes"],
        created_at=datetime.fromisoformat(row["created_at"]),
        created_by_email=row["created_by_email"],
    )


def _row_to_settlement(row: sqlite3.Row) -> Settlement:
    return Settlement(
        id=row["id"],
        list_id=row["list_id"],
        from_email=row["from_email"],
        to_email=row["to_email"],
        amount=row["amount"],
        date=datetime.fromisoformat(row["date"]),
        description=row["description"],
        status=row["status"],
        created_by_email=row["created_by_email"],
        confirmed_by_email=row["confirmed_by_email"],
        confirmed_date=datetime.fromisoformat(row["confirmed_date"])
        if row["confirmed_date"]
        else None,
    )

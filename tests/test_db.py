"""Tests for SQLite storage and its transactions."""

import threading

import pytest

from chipin.db import Database
from chipin.exceptions import (
    ConflictError,
    DuplicateSettlementError,
    LedgerValidationError,
    NotFoundError,
    PermissionDeniedError,
    SettlementAlreadyTransitionedError,
)
from chipin.models import ExpenseList, Settlement
from conftest import ALICE, BOB, CAROL, DAVE, make_expense


def pending_settlement(list_id: str, amount: float = 20.0) -> Settlement:
    return Settlement(
        from_email=BOB,
        to_email=ALICE,
        amount=amount,
        list_id=list_id,
        created_by_email=BOB,
    )


class TestLists:
    def test_round_trip(self, db, trip):
        loaded = db.get_expense_list(trip.id)

        assert loaded.name == "Trip"
        assert loaded.owner_email == ALICE
        assert loaded.shared_emails == [BOB, CAROL]
        assert loaded.members == [ALICE, BOB, CAROL]

    def test_owner_not_stored_as_shared(self, db):
        expense_list = ExpenseList(name="Solo", owner_email=ALICE, shared_emails=[ALICE, BOB, BOB])
        db.save_expense_list(expense_list)

        assert db.get_expense_list(expense_list.id).shared_emails == [BOB]

    def test_missing_list(self, db):
        assert db.get_expense_list("nope") is None

    def test_lists_for_participant(self, db, trip):
        other = ExpenseList(name="Flat", owner_email=DAVE, shared_emails=[BOB])
        db.save_expense_list(other)

        assert {lst.id for lst in db.get_lists_for_participant(BOB)} == {trip.id, other.id}
        assert [lst.id for lst in db.get_lists_for_participant(ALICE)] == [trip.id]
        assert db.get_lists_for_participant("nobody@example.com") == []


class TestExpenses:
    def test_save_and_load(self, db, trip):
        expense = make_expense(
            60, ALICE, "dynamic", [ALICE, BOB], items=[(ALICE, 50), (BOB, 50)]
        )
        db.save_expense(trip.id, expense)

        [loaded] = db.load_expenses(trip.id)

        assert loaded == expense

    def test_save_to_missing_list(self, db):
        with pytest.raises(NotFoundError):
            db.save_expense("nope", make_expense(10, ALICE, "equal", [ALICE]))

    def test_delete(self, db, trip):
        expense = make_expense(10, ALICE, "equal", [ALICE])
        db.save_expense(trip.id, expense)

        db.delete_expense(trip.id, expense.id)

        assert db.load_expenses(trip.id) == []
        assert db.get_expense(trip.id, expense.id) is None

    def test_delete_missing(self, db, trip):
        with pytest.raises(NotFoundError):
            db.delete_expense(trip.id, "nope")


class TestUpdateMembership:
    def test_add_adjusts_dynamic_expenses_and_logs(self, db, trip):
        dynamic = make_expense(30, ALICE, "dynamic", [ALICE, BOB, CAROL])
        fixed = make_expense(30, ALICE, "fixed", items=[(BOB, 30)])
        db.save_expense(trip.id, dynamic)
        db.save_expense(trip.id, fixed)

        adjusted = db.update_membership(trip.id, "add", DAVE, ALICE)

        assert [e.id for e in adjusted] == [dynamic.id]
        assert db.get_expense_list(trip.id).shared_emails == [BOB, CAROL, DAVE]
        assert db.get_expense(trip.id, dynamic.id).split_between_emails == [
            ALICE,
            BOB,
            CAROL,
            DAVE,
        ]
        assert db.get_expense(trip.id, fixed.id) == fixed

        [entry] = db.get_activity_log(trip.id)
        assert (entry.action, entry.actor_email, entry.subject_email) == ("share", ALICE, DAVE)

    def test_add_existing_member_is_noop(self, db, trip):
        assert db.update_membership(trip.id, "add", BOB, ALICE) == []
        assert db.update_membership(trip.id, "add", ALICE, ALICE) == []
        assert db.get_activity_log(trip.id) == []

    def test_remove_reassigns_payer(self, db, trip):
        expense = make_expense(30, BOB, "dynamic", [ALICE, BOB], items=[(ALICE, 70), (BOB, 30)])
        db.save_expense(trip.id, expense)

        db.update_membership(trip.id, "remove", BOB, ALICE)

        loaded = db.get_expense(trip.id, expense.id)
        assert loaded.paid_by_email == ALICE
        assert loaded.split_between_emails == [ALICE]
        assert [(i.email, i.value) for i in loaded.split_items] == [(ALICE, 100.0)]
        assert db.get_expense_list(trip.id).shared_emails == [CAROL]
        assert db.get_activity_log(trip.id)[-1].action == "remove_access"

    def test_remove_non_member(self, db, trip):
        with pytest.raises(NotFoundError):
            db.update_membership(trip.id, "remove", DAVE, ALICE)

    def test_owner_cannot_be_removed(self, db, trip):
        with pytest.raises(LedgerValidationError):
            db.update_membership(trip.id, "remove", ALICE, ALICE)

    def test_only_owner_changes_membership(self, db, trip):
        with pytest.raises(PermissionDeniedError):
            db.update_membership(trip.id, "add", DAVE, BOB)

        assert DAVE not in db.get_expense_list(trip.id).members

    def test_missing_list(self, db):
        with pytest.raises(NotFoundError):
            db.update_membership("nope", "add", DAVE, ALICE)

    def test_failure_rolls_back_everything(self, db, trip, monkeypatch):
        """Membership, expense adjustments and audit log commit together or not at all."""
        expense = make_expense(30, ALICE, "dynamic", [ALICE, BOB, CAROL])
        db.save_expense(trip.id, expense)

        def broken_log(*args, **kwargs):
            raise RuntimeError("audit log unavailable")

        monkeypatch.setattr(db, "_insert_activity_log", broken_log)

        with pytest.raises(RuntimeError):
            db.update_membership(trip.id, "add", DAVE, ALICE)

        assert db.get_expense_list(trip.id).shared_emails == [BOB, CAROL]
        assert db.get_expense(trip.id, expense.id) == expense
        assert db.get_activity_log(trip.id) == []


class TestSettlements:
    def test_create_and_load(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        assert db.load_settlements(trip.id) == [settlement]
        assert db.get_settlement(trip.id, settlement.id) == settlement

    def test_create_in_missing_list(self, db):
        with pytest.raises(NotFoundError):
            db.create_settlement(pending_settlement("nope"))

    def test_guarded_create_refuses_open_duplicate(self, db, trip):
        db.create_settlement(pending_settlement(trip.id))

        with pytest.raises(DuplicateSettlementError):
            db.create_settlement(pending_settlement(trip.id, 20.004), guard_duplicates=True)

        assert len(db.load_settlements(trip.id)) == 1

    def test_guarded_create_ignores_rejected_and_other_amounts(self, db, trip):
        rejected = pending_settlement(trip.id)
        db.create_settlement(rejected)
        db.transition_settlement(trip.id, rejected.id, "rejected", ALICE)

        db.create_settlement(pending_settlement(trip.id), guard_duplicates=True)
        db.create_settlement(pending_settlement(trip.id, 35.0), guard_duplicates=True)

        assert len(db.load_settlements(trip.id)) == 3

    def test_unguarded_create_allows_repeats(self, db, trip):
        db.create_settlement(pending_settlement(trip.id))
        db.create_settlement(pending_settlement(trip.id))

        assert len(db.load_settlements(trip.id)) == 2

    def test_confirm(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        confirmed = db.transition_settlement(trip.id, settlement.id, "confirmed", ALICE)

        assert confirmed.status == "confirmed"
        assert confirmed.confirmed_by_email == ALICE
        stored = db.get_settlement(trip.id, settlement.id)
        assert stored.status == "confirmed"
        assert stored.confirmed_date is not None

    def test_reject(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        db.transition_settlement(trip.id, settlement.id, "rejected", ALICE)

        assert db.get_settlement(trip.id, settlement.id).status == "rejected"

    def test_only_recipient_transitions(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        with pytest.raises(PermissionDeniedError):
            db.transition_settlement(trip.id, settlement.id, "confirmed", BOB)

        assert db.get_settlement(trip.id, settlement.id).status == "pending"

    def test_terminal_status(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)
        db.transition_settlement(trip.id, settlement.id, "confirmed", ALICE)

        with pytest.raises(SettlementAlreadyTransitionedError):
            db.transition_settlement(trip.id, settlement.id, "rejected", ALICE)

        assert db.get_settlement(trip.id, settlement.id).status == "confirmed"

    def test_cannot_transition_back_to_pending(self, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        with pytest.raises(LedgerValidationError):
            db.transition_settlement(trip.id, settlement.id, "pending", ALICE)

    def test_missing_settlement(self, db, trip):
        with pytest.raises(NotFoundError):
            db.transition_settlement(trip.id, "nope", "confirmed", ALICE)

    def test_concurrent_confirm_and_reject_has_one_winner(self, settings, db, trip):
        settlement = pending_settlement(trip.id)
        db.create_settlement(settlement)

        barrier = threading.Barrier(2)
        results: dict[str, object] = {}

        def attempt(status):
            conn = Database(settings.database_path, timeout=10)
            try:
                barrier.wait()
                results[status] = conn.transition_settlement(
                    trip.id, settlement.id, status, ALICE
                )
            except ConflictError as e:
                results[status] = e
            finally:
                conn.close()

        threads = [
            threading.Thread(target=attempt, args=(status,))
            for status in ("confirmed", "rejected")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [s for s, r in results.items() if isinstance(r, Settlement)]
        losers = [s for s, r in results.items() if isinstance(r, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert db.get_settlement(trip.id, settlement.id).status == winners[0]

    def test_concurrent_guarded_creates_have_one_winner(self, settings, db, trip):
        barrier = threading.Barrier(2)
        outcomes: list[object] = []

        def attempt():
            conn = Database(settings.database_path, timeout=10)
            try:
                barrier.wait()
                conn.create_settlement(pending_settlement(trip.id), guard_duplicates=True)
                outcomes.append("created")
            except DuplicateSettlementError as e:
                outcomes.append(e)
            finally:
                conn.close()

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("created") == 1
        assert len(db.load_settlements(trip.id)) == 1

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from splitledger import operations
from splitledger.database import run_in_transaction
from splitledger.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from splitledger.ledger import apply_debt
from splitledger.models import Balance, Expense, ExpenseSplit, InterestSetting, Settlement
from splitledger.money import add_months
from splitledger.operations import (
    create_expense,
    delete_expense,
    get_balances,
    get_expenses,
    get_interest_settings,
    get_settlements,
    get_user_summary,
    settle_up,
    update_interest_settings,
)
from splitledger.schemas import ExpenseIn, InterestSettingsIn, SettlementIn

from conftest import OUTSIDER, balance_map


def _expense(amount, paid_by, users, split_type="equal", date="2026-10-01", **kwargs):
    splits = kwargs.pop("splits", None) or [{"user_id": u} for u in users]
    return ExpenseIn(
        description="Groceries",
        category="groceries",
        amount=amount,
        paid_by=paid_by,
        date=date,
        split_type=split_type,
        splits=splits,
        **kwargs,
    )


def _payment(payer, receiver, amount, date="2026-10-05"):
    return SettlementIn(**{"from": payer, "to": receiver, "amount": amount, "date": date})


def _enable_interest(db, project, rate=0.05, months=1):
    return update_interest_settings(
        db,
        project.id,
        InterestSettingsIn(enable_interest=True, interest_rate=rate, interest_start_months=months),
        actor_id="alice",
    )


class TestCreateExpense:

    def test_non_payers_owe_payer_their_share(self, db, project):
        expense = create_expense(db, project.id, _expense(3000, "alice", ["alice", "bob", "carol"]))

        assert [s.amount for s in expense.splits] == [1000, 1000, 1000]
        assert [s.is_payer for s in expense.splits] == [True, False, False]
        assert balance_map(db, project.id) == {("bob", "alice"): 1000, ("carol", "alice"): 1000}

    def test_split_conserves_the_total(self, db, project):
        expense = create_expense(db, project.id, _expense(100, "bob", ["alice", "bob", "carol"]))

        splits = {s.user_id: s.amount for s in expense.splits}
        assert splits == {"alice": 34, "bob": 33, "carol": 33}
        assert sum(splits.values()) == 100
        owed_to_payer = sum(amount for (_, creditor), amount in balance_map(db, project.id).items() if creditor == "bob")
        assert owed_to_payer == 100 - splits["bob"]

    def test_payer_outside_the_split_is_owed_everything(self, db, project):
        create_expense(db, project.id, _expense(100, "dave", ["alice", "bob", "carol"]))
        rows = balance_map(db, project.id)
        assert sum(rows.values()) == 100
        assert rows == {("alice", "dave"): 34, ("bob", "dave"): 33, ("carol", "dave"): 33}

    def test_exact_split(self, db, project):
        splits = [{"user_id": "alice", "amount": 200}, {"user_id": "bob", "amount": 800}]
        create_expense(db, project.id, _expense(1000, "alice", [], split_type="exact", splits=splits))
        assert balance_map(db, project.id) == {("bob", "alice"): 800}

    def test_shares_with_zero_weight_participant(self, db, project):
        splits = [
            {"user_id": "alice", "shares": 1},
            {"user_id": "bob", "shares": 1},
            {"user_id": "carol", "shares": 0},
        ]
        expense = create_expense(db, project.id, _expense(3, "alice", [], split_type="shares", splits=splits))

        assert sorted((s.user_id, s.amount) for s in expense.splits) == [("alice", 2), ("bob", 1), ("carol", 0)]
        assert balance_map(db, project.id) == {("bob", "alice"): 1}

    def test_zero_share_does_not_touch_ledger(self, db, project):
        splits = [{"user_id": "alice", "amount": 1000}, {"user_id": "bob", "amount": 0}]
        expense = create_expense(db, project.id, _expense(1000, "alice", [], split_type="exact", splits=splits))
        assert len(expense.splits) == 2
        assert balance_map(db, project.id) == {}

    def test_nets_against_existing_debt(self, db, project):
        create_expense(db, project.id, _expense(1000, "bob", ["alice", "bob"]))
        create_expense(db, project.id, _expense(400, "alice", ["alice", "bob"]))
        assert balance_map(db, project.id) == {("alice", "bob"): 300}

    def test_uses_project_currency(self, db, project):
        expense = create_expense(db, project.id, _expense(1000, "bob", ["alice", "bob"]))
        assert expense.currency == "USD"

    def test_rejects_split_not_matching_total(self, db, project):
        splits = [{"user_id": "alice", "amount": 200}, {"user_id": "bob", "amount": 700}]
        with pytest.raises(ValidationError):
            create_expense(db, project.id, _expense(1000, "alice", [], split_type="exact", splits=splits))
        assert db.query(Expense).count() == 0

    def test_rejects_non_member_participant(self, db, project):
        with pytest.raises(ValidationError):
            create_expense(db, project.id, _expense(1000, "alice", ["alice", OUTSIDER]))
        assert db.query(Expense).count() == 0

    def test_rejects_non_member_payer(self, db, project):
        with pytest.raises(ValidationError):
            create_expense(db, project.id, _expense(1000, OUTSIDER, ["alice", "bob"]))

    def test_rejects_non_positive_amount(self, db, project):
        with pytest.raises(ValidationError):
            create_expense(db, project.id, _expense(0, "alice", ["alice", "bob"]))

    def test_rejects_bad_date(self, db, project):
        with pytest.raises(ValidationError):
            create_expense(db, project.id, _expense(100, "alice", ["alice", "bob"], date="yesterday"))

    def test_unknown_project(self, db, project):
        with pytest.raises(NotFoundError):
            create_expense(db, "missing", _expense(100, "alice", ["alice", "bob"]))

    def test_failure_midway_rolls_back_everything(self, db, project, monkeypatch):
        calls = []

        def failing_apply_debt(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return apply_debt(*args, **kwargs)

        monkeypatch.setattr(operations, "apply_debt", failing_apply_debt)
        with pytest.raises(RuntimeError):
            create_expense(db, project.id, _expense(3000, "alice", ["alice", "bob", "carol"]))

        assert db.query(Expense).count() == 0
        assert db.query(ExpenseSplit).count() == 0
        assert balance_map(db, project.id) == {}

    def test_conflict_retries_whole_operation(self, db, project, monkeypatch):
        calls = []

        def flaky_apply_debt(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO balances", {}, Exception("duplicate key"))
            return apply_debt(*args, **kwargs)

        monkeypatch.setattr(operations, "apply_debt", flaky_apply_debt)
        create_expense(db, project.id, _expense(3000, "alice", ["alice", "bob", "carol"]))

        assert db.query(Expense).count() == 1
        assert db.query(ExpenseSplit).count() == 3
        assert balance_map(db, project.id) == {("bob", "alice"): 1000, ("carol", "alice"): 1000}


class TestDeleteExpense:

    def test_round_trip_from_empty_ledger(self, db, project):
        expense = create_expense(db, project.id, _expense(999, "alice", ["alice", "bob", "carol"]))
        delete_expense(db, expense.id, actor_id="alice")

        assert balance_map(db, project.id) == {}
        assert db.query(Expense).count() == 0
        assert db.query(ExpenseSplit).count() == 0

    def test_round_trip_restores_prior_balances(self, db, project):
        create_expense(db, project.id, _expense(400, "alice", ["alice", "bob"]))
        create_expense(db, project.id, _expense(900, "carol", ["carol", "dave"]))
        before = balance_map(db, project.id)

        expense = create_expense(db, project.id, _expense(900, "bob", ["alice", "bob", "carol"]))
        assert balance_map(db, project.id) != before
        delete_expense(db, expense.id, actor_id="bob")

        assert balance_map(db, project.id) == before

    def test_reversal_nets_against_later_activity(self, db, project):
        expense = create_expense(db, project.id, _expense(1000, "alice", ["alice", "bob"]))
        settle_up(db, project.id, _payment("bob", "alice", 500), created_by="bob")
        delete_expense(db, expense.id, actor_id="alice")

        # bob paid 500 toward a debt that no longer exists
        assert balance_map(db, project.id) == {("alice", "bob"): 500}

    def test_project_owner_may_delete(self, db, project):
        expense = create_expense(db, project.id, _expense(1000, "bob", ["bob", "carol"]))
        delete_expense(db, expense.id, actor_id="alice")
        assert balance_map(db, project.id) == {}

    def test_other_members_may_not_delete(self, db, project):
        expense = create_expense(db, project.id, _expense(1000, "bob", ["bob", "carol"]))
        with pytest.raises(ForbiddenError):
            delete_expense(db, expense.id, actor_id="carol")
        assert balance_map(db, project.id) == {("carol", "bob"): 500}

    def test_unknown_expense(self, db, project):
        with pytest.raises(NotFoundError):
            delete_expense(db, "missing", actor_id="alice")

    def test_expense_from_another_project(self, db, project):
        expense = create_expense(db, project.id, _expense(1000, "bob", ["bob", "carol"]))
        with pytest.raises(NotFoundError):
            delete_expense(db, expense.id, actor_id="alice", project_id="other")


class TestSettleUp:

    def test_full_payment_clears_balance(self, db, project):
        apply_debt(db, project.id, "bob", "alice", 1000)
        db.commit()

        settlement = settle_up(db, project.id, _payment("bob", "alice", 1000), created_by="bob")

        assert balance_map(db, project.id) == {}
        assert settlement.status == "verified"
        assert settlement.principal_amount == 1000
        assert settlement.interest_amount == 0
        assert settlement.verified_at is not None
        assert settlement.created_by == "bob"

    def test_partial_payment_leaves_remainder(self, db, project):
        apply_debt(db, project.id, "bob", "alice", 1000)
        db.commit()

        settle_up(db, project.id, _payment("bob", "alice", 400), created_by="bob")
        assert balance_map(db, project.id) == {("bob", "alice"): 600}

    def test_overpayment_flips_direction(self, db, project):
        apply_debt(db, project.id, "bob", "alice", 1000)
        db.commit()

        settle_up(db, project.id, _payment("bob", "alice", 1500), created_by="bob")
        assert balance_map(db, project.id) == {("alice", "bob"): 500}

    def test_payment_without_debt_creates_credit(self, db, project):
        settle_up(db, project.id, _payment("carol", "dave", 250), created_by="carol")
        assert balance_map(db, project.id) == {("dave", "carol"): 250}

    def test_rejects_self_payment(self, db, project):
        with pytest.raises(ValidationError):
            settle_up(db, project.id, _payment("bob", "bob", 100), created_by="bob")
        assert db.query(Settlement).count() == 0

    @pytest.mark.parametrize("amount", [0, -100])
    def test_rejects_non_positive_amount(self, db, project, amount):
        with pytest.raises(ValidationError):
            settle_up(db, project.id, _payment("bob", "alice", amount), created_by="bob")

    def test_rejects_non_member(self, db, project):
        with pytest.raises(ValidationError):
            settle_up(db, project.id, _payment(OUTSIDER, "alice", 100), created_by="alice")

    def test_rejects_unknown_payment_method(self, db, project):
        data = _payment("bob", "alice", 100)
        data.payment_method = "cheque"
        with pytest.raises(ValidationError):
            settle_up(db, project.id, data, created_by="bob")

    def test_settlement_history_is_newest_first(self, db, project):
        settle_up(db, project.id, _payment("bob", "alice", 100, date="2026-09-01"), created_by="bob")
        settle_up(db, project.id, _payment("carol", "alice", 200, date="2026-10-01"), created_by="carol")

        assert [s.amount for s in get_settlements(db, project.id)] == [200, 100]


class TestReads:

    def test_expenses_newest_first_with_splits(self, db, project):
        create_expense(db, project.id, _expense(100, "alice", ["alice", "bob"], date="2026-01-01"))
        create_expense(db, project.id, _expense(200, "alice", ["alice", "bob"], date="2026-02-01"))

        expenses = get_expenses(db, project.id)
        assert [e.amount for e in expenses] == [200, 100]
        assert [s.user_id for s in expenses[0].splits] == ["alice", "bob"]

    def test_balances_without_interest(self, db, project):
        create_expense(db, project.id, _expense(2000, "alice", ["alice", "bob"]))

        [balance] = get_balances(db, project.id)
        assert balance["from"] == "bob"
        assert balance["to"] == "alice"
        assert balance["amount"] == 1000
        assert balance["accruedInterest"] == 0
        assert balance["totalAmount"] == 1000

    def test_balances_accrue_interest_after_grace_period(self, db, project):
        _enable_interest(db, project, rate=0.05, months=1)
        create_expense(db, project.id, _expense(200000, "alice", ["alice", "bob"]))
        row = db.query(Balance).one()
        start = row.interest_start_date
        assert start == add_months(row.updated_at, 1)

        [inside] = get_balances(db, project.id, now=start - timedelta(days=1))
        [after] = get_balances(db, project.id, now=start + timedelta(days=365))

        assert inside["accruedInterest"] == 0
        assert 4999 <= after["accruedInterest"] <= 5000
        assert after["totalAmount"] == 100000 + after["accruedInterest"]
        assert after["enableInterest"] is True
        # reads never write interest back
        db.refresh(row)
        assert row.amount == row.base_amount == 100000

    def test_settlement_rows_use_updated_at_for_interest(self, db, project):
        _enable_interest(db, project, rate=0.10, months=0)
        settle_up(db, project.id, _payment("bob", "alice", 36500), created_by="bob")
        row = db.query(Balance).one()
        assert row.interest_start_date is None

        [balance] = get_balances(db, project.id, now=row.updated_at + timedelta(days=10))
        # 36500 * 0.10 / 365 * 10 days = 100, floored
        assert balance["accruedInterest"] in (99, 100)

    @pytest.mark.parametrize("debtor,creditor", [("bob", "alice"), ("alice", "bob")])
    def test_later_activity_does_not_delay_fallback_interest(self, db, project, debtor, creditor):
        opened = datetime(2025, 1, 10)
        apply_debt(db, project.id, "bob", "alice", 100000, now=opened)
        apply_debt(db, project.id, debtor, creditor, 1, now=opened + timedelta(days=300))
        db.commit()
        _enable_interest(db, project, rate=0.10, months=1)

        [balance] = get_balances(db, project.id, now=opened + timedelta(days=400))

        # grace period ends 2025-02-10, so 369 days accrue on 100000 +/- 1
        assert balance["accruedInterest"] == 10109

    def test_user_summary(self, db, project):
        create_expense(db, project.id, _expense(3000, "alice", ["alice", "bob", "carol"]))
        create_expense(db, project.id, _expense(600, "bob", ["alice", "bob"]))

        summary = get_user_summary(db, project.id, "alice")
        assert summary["totalOwed"] == 1700
        assert summary["totalOwes"] == 0
        assert summary["net"] == 1700
        assert {b["from"] for b in summary["owedBy"]} == {"bob", "carol"}


class TestInterestSettings:

    def test_upsert_keeps_one_row(self, db, project):
        _enable_interest(db, project, rate=0.05, months=1)
        _enable_interest(db, project, rate=0.08, months=3)

        assert db.query(InterestSetting).count() == 1
        settings = get_interest_settings(db, project.id)
        assert settings.interest_rate == 0.08
        assert settings.interest_start_months == 3

    def test_only_owner_can_update(self, db, project):
        data = InterestSettingsIn(enable_interest=True, interest_rate=0.05)
        with pytest.raises(ForbiddenError):
            update_interest_settings(db, project.id, data, actor_id="bob")

    @pytest.mark.parametrize("rate", [1.0, -0.01])
    def test_rejects_out_of_range_rate(self, db, project, rate):
        data = InterestSettingsIn(enable_interest=True, interest_rate=rate)
        with pytest.raises(ValidationError):
            update_interest_settings(db, project.id, data, actor_id="alice")

    def test_rejects_negative_grace_period(self, db, project):
        data = InterestSettingsIn(enable_interest=True, interest_rate=0.05, interest_start_months=-1)
        with pytest.raises(ValidationError):
            update_interest_settings(db, project.id, data, actor_id="alice")

    def test_missing_settings(self, db, project):
        assert get_interest_settings(db, project.id) is None


class TestRunInTransaction:

    def test_gives_up_after_retries(self, db, project):
        attempts = []

        def always_conflicts():
            attempts.append(1)
            raise OperationalError("UPDATE balances", {}, Exception("could not serialize access"))

        with pytest.raises(ConflictError):
            run_in_transaction(db, always_conflicts, retries=2)
        assert len(attempts) == 3

    def test_returns_operation_result(self, db, project):
        assert run_in_transaction(db, lambda: 42) == 42

    def test_check_violation_is_not_retried(self, db, project):
        attempts = []

        def violates_check():
            attempts.append(1)
            raise IntegrityError("UPDATE balances", {}, Exception("CHECK constraint failed: positive_balance"))

        with pytest.raises(IntegrityError):
            run_in_transaction(db, violates_check, retries=3)
        assert len(attempts) == 1

    def test_pgcode_decides_over_message(self, db, project):
        class ForeignKeyViolation(Exception):
            pgcode = "23503"

        attempts = []

        def violates_foreign_key():
            attempts.append(1)
            raise IntegrityError("INSERT INTO expense_splits", {}, ForeignKeyViolation("duplicate key in message"))

        with pytest.raises(IntegrityError):
            run_in_transaction(db, violates_foreign_key, retries=3)
        assert len(attempts) == 1

    def test_deadlock_is_retried(self, db, project):
        class DeadlockDetected(Exception):
            pgcode = "40P01"

        attempts = []

        def deadlocks_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("UPDATE balances", {}, DeadlockDetected("deadlock detected"))
            return "done"

        assert run_in_transaction(db, deadlocks_once, retries=3) == "done"
        assert len(attempts) == 2

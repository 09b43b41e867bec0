"""Ledger operations: expenses, settlements, balances and interest settings.

Every write runs through run_in_transaction() so an operation is applied
completely or not at all. Validation happens before the transaction starts.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session, selectinload

from splitledger.database import run_in_transaction
from splitledger.errors import ForbiddenError, NotFoundError, ValidationError
from splitledger.interest import annotate_balance
from splitledger.ledger import apply_debt
from splitledger.models import (
    PAYMENT_METHODS, Balance, Expense, ExpenseSplit, InterestSetting, Project, ProjectMember,
    Settlement,
)
from splitledger.schemas import ExpenseIn, InterestSettingsIn, SettlementIn
from splitledger.serializers import serialize_balance
from splitledger.splits import calculate_split, validate_split

logger = logging.getLogger("splitledger")


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_project(db: Session, project_id: str) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def project_user_ids(db: Session, project: Project) -> set[str]:
    """Owner plus every member of the project."""
    member_ids = {
        m.user_id for m in db.query(ProjectMember.user_id).filter(ProjectMember.project_id == project.id).all()
    }
    member_ids.add(project.owner_id)
    return member_ids


def _validate_members(db: Session, project: Project, user_ids: list[str]) -> None:
    allowed = project_user_ids(db, project)
    for uid in user_ids:
        if uid not in allowed:
            raise ValidationError(f"User {uid} is not a member of this project")


def _currency(project: Project, settings: InterestSetting | None) -> str:
    return settings.currency if settings else project.currency


# --- Interest settings ---

def get_interest_settings(db: Session, project_id: str) -> InterestSetting | None:
    return db.query(InterestSetting).filter(InterestSetting.project_id == project_id).first()


def update_interest_settings(
    db: Session,
    project_id: str,
    data: InterestSettingsIn,
    actor_id: str,
) -> InterestSetting:
    project = get_project(db, project_id)
    if actor_id != project.owner_id:
        raise ForbiddenError("Only the project owner can update settings")
    if data.interest_rate is not None and not 0 <= data.interest_rate < 1:
        raise ValidationError("Interest rate must be between 0 and 1")
    if data.interest_start_months is not None and data.interest_start_months < 0:
        raise ValidationError("Interest start months cannot be negative")
    if len(data.currency) != 3:
        raise ValidationError("Currency must be a 3-letter code")

    def upsert() -> InterestSetting:
        settings = get_interest_settings(db, project_id)
        if settings is None:
            settings = InterestSetting(project_id=project_id)
            db.add(settings)
        settings.enable_interest = data.enable_interest
        settings.interest_rate = data.interest_rate
        settings.interest_start_months = data.interest_start_months
        settings.currency = data.currency.upper()
        db.flush()
        return settings

    settings = run_in_transaction(db, upsert)
    db.refresh(settings)
    logger.info(
        "Interest settings updated",
        extra={"extra_data": {"project_id": project_id, "enable_interest": settings.enable_interest}},
    )
    return settings


# --- Expenses ---

def create_expense(db: Session, project_id: str, data: ExpenseIn) -> Expense:
    """Record an expense and charge every participant's share to the payer."""
    project = get_project(db, project_id)
    if data.amount <= 0:
        raise ValidationError("Expense amount must be positive")
    expense_date = _parse_date(data.date)
    _validate_members(db, project, [data.paid_by] + [s.user_id for s in data.splits])

    amounts = calculate_split(data.amount, data.split_type, data.splits)
    validate_split(data.amount, data.splits, amounts)
    settings = get_interest_settings(db, project_id)
    currency = data.currency.upper() if data.currency else _currency(project, settings)

    def apply() -> Expense:
        now = datetime.utcnow()
        expense = Expense(
            project_id=project_id,
            paid_by=data.paid_by,
            description=data.description,
            category=data.category,
            amount=data.amount,
            currency=currency,
            split_type=data.split_type,
            expense_date=expense_date,
            notes=data.notes,
            receipt_url=data.receipt_url,
            splits=[
                ExpenseSplit(
                    user_id=s.user_id,
                    position=i,
                    amount=amount,
                    percentage=s.percentage,
                    shares=s.shares,
                    is_payer=s.user_id == data.paid_by,
                )
                for i, (s, amount) in enumerate(zip(data.splits, amounts))
            ],
        )
        db.add(expense)
        db.flush()

        for s, amount in zip(data.splits, amounts):
            if s.user_id == data.paid_by or amount == 0:
                continue
            apply_debt(db, project_id, s.user_id, data.paid_by, amount, settings, now)
        return expense

    expense = run_in_transaction(db, apply)
    db.refresh(expense)
    logger.info(
        "Expense created",
        extra={"extra_data": {"project_id": project_id, "expense_id": expense.id, "amount": expense.amount}},
    )
    return expense


def delete_expense(db: Session, expense_id: str, actor_id: str, project_id: str | None = None) -> None:
    """Undo an expense's effect on balances, then delete it.

    The reversal is applied against current balances, so it nets correctly
    even if settlements or other expenses touched the same pairs since.
    """
    expense = db.query(Expense).filter(Expense.id == expense_id).first()
    if not expense or (project_id is not None and expense.project_id != project_id):
        raise NotFoundError("Expense not found")

    project = get_project(db, expense.project_id)
    if actor_id not in (expense.paid_by, project.owner_id):
        raise ForbiddenError("You can only delete expenses you paid for or if you are the project owner")

    def apply() -> None:
        now = datetime.utcnow()
        reversals = [(s.user_id, s.amount) for s in expense.splits]
        for user_id, amount in reversals:
            if user_id == expense.paid_by or amount == 0:
                continue
            apply_debt(db, expense.project_id, expense.paid_by, user_id, amount, now=now)
        db.delete(expense)
        db.flush()

    run_in_transaction(db, apply)
    logger.info(
        "Expense deleted",
        extra={"extra_data": {"project_id": project.id, "expense_id": expense_id, "actor": actor_id}},
    )


def get_expenses(db: Session, project_id: str) -> list[Expense]:
    get_project(db, project_id)
    return (
        db.query(Expense)
        .options(selectinload(Expense.splits))
        .filter(Expense.project_id == project_id)
        .order_by(Expense.expense_date.desc(), Expense.created_at.desc())
        .all()
    )


# --- Settlements ---

def settle_up(db: Session, project_id: str, data: SettlementIn, created_by: str) -> Settlement:
    """Record a payment from one member to another and net it into their balance.

    "payer pays receiver X" moves the ledger exactly like "receiver owes
    payer X", so it shrinks, clears or flips whatever the payer owed.
    """
    project = get_project(db, project_id)
    if data.amount <= 0:
        raise ValidationError("Settlement amount must be positive")
    if data.from_user == data.to:
        raise ValidationError("Payer and receiver must be different users")
    if data.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {data.payment_method}")
    settlement_date = _parse_date(data.date)
    _validate_members(db, project, [data.from_user, data.to])
    currency = _currency(project, get_interest_settings(db, project_id))

    def apply() -> Settlement:
        now = datetime.utcnow()
        settlement = Settlement(
            project_id=project_id,
            from_user_id=data.from_user,
            to_user_id=data.to,
            amount=data.amount,
            principal_amount=data.amount,
            currency=currency,
            status="verified",
            payment_method=data.payment_method,
            notes=data.notes,
            settlement_date=settlement_date,
            verified_at=now,
            created_by=created_by,
        )
        db.add(settlement)
        apply_debt(db, project_id, data.to, data.from_user, data.amount, now=now)
        return settlement

    settlement = run_in_transaction(db, apply)
    db.refresh(settlement)
    logger.info(
        "Settlement recorded",
        extra={"extra_data": {
            "project_id": project_id,
            "settlement_id": settlement.id,
            "from": data.from_user,
            "to": data.to,
            "amount": data.amount,
        }},
    )
    return settlement


def get_settlements(db: Session, project_id: str) -> list[Settlement]:
    get_project(db, project_id)
    return (
        db.query(Settlement)
        .filter(Settlement.project_id == project_id)
        .order_by(Settlement.settlement_date.desc(), Settlement.created_at.desc())
        .all()
    )


# --- Balances ---

def get_balances(db: Session, project_id: str, now: datetime | None = None) -> list[dict]:
    """Current balances with interest accrued as of now."""
    get_project(db, project_id)
    settings = get_interest_settings(db, project_id)
    balances = (
        db.query(Balance)
        .filter(Balance.project_id == project_id)
        .order_by(Balance.updated_at.desc())
        .all()
    )
    return [serialize_balance(b, annotate_balance(b, settings, now)) for b in balances]


def get_user_summary(db: Session, project_id: str, user_id: str, now: datetime | None = None) -> dict:
    balances = get_balances(db, project_id, now)
    owes = [b for b in balances if b["from"] == user_id]
    owed_by = [b for b in balances if b["to"] == user_id]
    total_owes = sum(b["totalAmount"] for b in owes)
    total_owed = sum(b["totalAmount"] for b in owed_by)
    return {
        "userId": user_id,
        "owes": owes,
        "owedBy": owed_by,
        "totalOwes": total_owes,
        "totalOwed": total_owed,
        "net": total_owed - total_owes,
    }

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, Column, String, Integer, Float, Text, DateTime, ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from splitledger.database import Base

SPLIT_TYPES = ("equal", "exact", "percentage", "shares")
SETTLEMENT_STATUSES = ("pending", "paid", "verified")
PAYMENT_METHODS = ("cash", "zelle")
MEMBER_ROLES = ("owner", "admin", "member", "viewer")


def new_uuid():
    return str(uuid.uuid4())


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="project", cascade="all, delete-orphan")
    settlements = relationship("Settlement", back_populates="project", cascade="all, delete-orphan")


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("project_id", "user_id"),)

    project = relationship("Project", back_populates="members")


class InterestSetting(Base):
    __tablename__ = "interest_settings"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True)
    enable_interest = Column(Boolean, nullable=False, default=False)
    interest_rate = Column(Float, nullable=True)  # annual, 0.05 = 5%
    interest_start_months = Column(Integer, nullable=True)  # grace period
    currency = Column(String(3), nullable=False, default="USD")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("interest_rate >= 0 AND interest_rate < 1", name="valid_interest_rate"),
    )


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    paid_by = Column(String, nullable=False)
    description = Column(String(255), nullable=False)
    category = Column(String(50), nullable=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(3), nullable=False, default="USD")
    split_type = Column(String(20), nullable=False, default="equal")
    expense_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    receipt_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    project = relationship("Project", back_populates="expenses")
    splits = relationship(
        "ExpenseSplit",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseSplit.position",
    )


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id = Column(String, primary_key=True, default=new_uuid)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # input order
    amount = Column(Integer, nullable=False)  # cents owed for this expense
    percentage = Column(Float, nullable=True)
    shares = Column(Integer, nullable=True)
    is_payer = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("expense_id", "user_id"),)

    expense = relationship("Expense", back_populates="splits")


class Balance(Base):
    __tablename__ = "balances"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(String, nullable=False)  # debtor
    to_user_id = Column(String, nullable=False)  # creditor
    amount = Column(Integer, nullable=False)  # cents, always > 0
    base_amount = Column(Integer, nullable=False)  # principal, equals amount at rest
    interest_start_date = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "from_user_id", "to_user_id"),
        CheckConstraint("amount > 0", name="positive_balance"),
    )


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(String, nullable=False)  # payer
    to_user_id = Column(String, nullable=False)  # receiver
    amount = Column(Integer, nullable=False)
    principal_amount = Column(Integer, nullable=False)
    interest_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(20), nullable=False, default="zelle")
    notes = Column(Text, nullable=True)
    settlement_date = Column(DateTime, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(String, nullable=False)

    project = relationship("Project", back_populates="settlements")

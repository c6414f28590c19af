from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from periods import Granularity

MONEY = Numeric(12, 2)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class DebtStatus(str, Enum):
    pending = "Pending"
    paid = "Paid"
    overdue = "Overdue"


DEBT_STATUS_ENUM = SAEnum(
    DebtStatus,
    name="debtstatus",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class TransactionMixin(TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)


class Income(Base, TransactionMixin):
    __tablename__ = "incomes"
    transaction_type = TransactionType.income

    __table_args__ = (
        Index("ix_incomes_date", "date"),
        CheckConstraint("amount > 0", name="ck_incomes_amount_positive"),
    )


class Expense(Base, TransactionMixin):
    __tablename__ = "expenses"
    transaction_type = TransactionType.expense

    __table_args__ = (
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category_date", "category", "date"),
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )


class FinancialSummary(Base):
    __tablename__ = "financial_summaries"
    __table_args__ = (
        UniqueConstraint(
            "granularity", "period_start", name="uq_summary_granularity_period"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    granularity: Mapped[Granularity] = mapped_column(
        SAEnum(Granularity), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_income: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    total_expenses: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    net_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    debtor_name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[DebtStatus] = mapped_column(
        DEBT_STATUS_ENUM, nullable=False, default=DebtStatus.pending
    )

    __table_args__ = (
        Index("ix_debts_status_due", "status", "due_date"),
        CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_name: Mapped[str] = mapped_column(String(120), nullable=False)
    goal_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("goal_amount > 0", name="ck_savings_goal_amount_positive"),
        CheckConstraint(
            "current_amount >= 0", name="ck_savings_current_amount_non_negative"
        ),
    )

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import DebtStatus
from periods import Granularity


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    date: date
    note: Optional[str] = Field(default=None, max_length=500)


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = None
    note: Optional[str] = Field(default=None, max_length=500)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    category: str
    date: date
    note: Optional[str]
    created_at: datetime
    updated_at: datetime


class DebtIn(BaseModel):
    debtor_name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: date
    status: DebtStatus = DebtStatus.pending


class DebtUpdate(BaseModel):
    debtor_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    due_date: Optional[date] = None
    status: Optional[DebtStatus] = None


class DebtOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    debtor_name: str
    description: Optional[str]
    amount: Decimal
    due_date: date
    status: DebtStatus
    created_at: datetime
    updated_at: datetime


class SavingsGoalIn(BaseModel):
    goal_name: str = Field(..., min_length=1, max_length=120)
    goal_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    current_amount: Decimal = Field(
        default=Decimal("0"), ge=0, max_digits=12, decimal_places=2
    )
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    notes: Optional[str] = None


class SavingsGoalUpdate(BaseModel):
    goal_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    goal_amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    current_amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    notes: Optional[str] = None


class SavingsGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    goal_name: str
    goal_amount: Decimal
    current_amount: Decimal
    start_date: Optional[date]
    target_date: Optional[date]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class SummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    granularity: Granularity
    period_start: date
    period_end: date
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal


class CategoryTotalOut(BaseModel):
    category: str
    total_amount: Decimal


class MonthlyTrendOut(BaseModel):
    month: str
    total_income: Decimal
    total_expenses: Decimal


class AdviceOut(BaseModel):
    advice: str

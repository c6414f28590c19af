from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions
from database import session_scope
from models import (
    Debt,
    DebtStatus,
    Expense,
    FinancialSummary,
    Income,
    SavingsGoal,
    TransactionMixin,
)
from periods import (
    Granularity,
    InvalidGranularity,
    Period,
    calculate_period,
    today_in,
)
from schemas import (
    DebtIn,
    DebtUpdate,
    SavingsGoalIn,
    SavingsGoalUpdate,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ALL_GRANULARITIES = (Granularity.weekly, Granularity.monthly, Granularity.yearly)


class SummaryView(str, Enum):
    overall = "overall"
    income = "income"
    expenses = "expenses"
    savings = "savings"
    debts = "debts"


RESERVED_VIEWS = frozenset({SummaryView.savings, SummaryView.debts})


class InvalidView(ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid view type: {value}")
        self.value = value


class ViewNotImplemented(NotImplementedError):
    def __init__(self, view: SummaryView) -> None:
        super().__init__(f"View type '{view.value}' is not implemented yet")
        self.view = view


class StorageError(RuntimeError):
    pass


class PartialInvalidationFailure(RuntimeError):
    def __init__(self, failures: list[tuple[object, Exception]]) -> None:
        first_key, first_error = failures[0]
        super().__init__(
            f"{len(failures)} granularity(ies) failed to invalidate; "
            f"first: {first_key}: {first_error}"
        )
        self.failures = failures


def to_money(value: object) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def as_view(value: Union[SummaryView, str, None]) -> SummaryView:
    if value is None or value == "":
        return SummaryView.overall
    if isinstance(value, SummaryView):
        return value
    try:
        return SummaryView(value)
    except ValueError as exc:
        raise InvalidView(value) from exc


class SummaryService:
    """Period summaries backed by the ``financial_summaries`` cache table.

    Only the overall view is persisted. A cached row is returned verbatim
    until :meth:`invalidate_for_date` deletes it, so the next read recomputes
    from the current income and expense tables.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def sum_amount(
        self, model: type[TransactionMixin], start: date, end: date
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(model.amount), 0)).where(
            model.date >= start, model.date <= end
        )
        try:
            total = self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            logger.error(
                f"sum_amount_failed: table={model.__tablename__} "
                f"start={start} end={end} error={exc}"
            )
            raise StorageError("Could not aggregate transactions") from exc
        return to_money(total)

    def get_or_create_summary(
        self,
        granularity: Union[Granularity, str],
        target_date: Union[date, datetime],
        view: Union[SummaryView, str, None] = SummaryView.overall,
    ) -> FinancialSummary:
        period = calculate_period(target_date, granularity)
        resolved = as_view(view)
        if resolved in RESERVED_VIEWS:
            raise ViewNotImplemented(resolved)
        if resolved is SummaryView.overall:
            return self._overall(period)
        return self._partial_views[resolved](self, period)

    def _fetch_cached(
        self, granularity: Granularity, period_start: date
    ) -> Optional[FinancialSummary]:
        stmt = select(FinancialSummary).where(
            FinancialSummary.granularity == granularity,
            FinancialSummary.period_start == period_start,
        )
        try:
            return self.session.scalars(stmt).first()
        except SQLAlchemyError as exc:
            logger.error(
                f"summary_fetch_failed: granularity={granularity.value} "
                f"period_start={period_start} error={exc}"
            )
            raise StorageError("Could not read financial summary") from exc

    def _overall(self, period: Period) -> FinancialSummary:
        cached = self._fetch_cached(period.granularity, period.start)
        if cached is not None:
            return cached

        total_income = self.sum_amount(Income, period.start, period.end)
        total_expenses = self.sum_amount(Expense, period.start, period.end)
        summary = FinancialSummary(
            granularity=period.granularity,
            period_start=period.start,
            period_end=period.end,
            total_income=total_income,
            total_expenses=total_expenses,
            net_balance=total_income - total_expenses,
        )
        self.session.add(summary)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost the insert race on (granularity, period_start).
            self.session.rollback()
            logger.info(
                f"summary_insert_conflict: granularity={period.granularity.value} "
                f"period_start={period.start} action=refetch"
            )
            existing = self._fetch_cached(period.granularity, period.start)
            if existing is None:
                raise StorageError("Financial summary vanished after conflict")
            return existing
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                f"summary_store_failed: granularity={period.granularity.value} "
                f"period_start={period.start} error={exc}"
            )
            raise StorageError("Could not store financial summary") from exc
        return summary

    def _view_summary(
        self, period: Period, total_income: Decimal, total_expenses: Decimal
    ) -> FinancialSummary:
        return FinancialSummary(
            granularity=period.granularity,
            period_start=period.start,
            period_end=period.end,
            total_income=total_income,
            total_expenses=total_expenses,
            net_balance=total_income - total_expenses,
        )

    def _income_only(self, period: Period) -> FinancialSummary:
        income = self.sum_amount(Income, period.start, period.end)
        return self._view_summary(period, income, Decimal("0.00"))

    def _expenses_only(self, period: Period) -> FinancialSummary:
        expenses = self.sum_amount(Expense, period.start, period.end)
        return self._view_summary(period, Decimal("0.00"), expenses)

    _partial_views: dict[
        SummaryView, Callable[["SummaryService", Period], FinancialSummary]
    ] = {
        SummaryView.income: _income_only,
        SummaryView.expenses: _expenses_only,
    }

    def invalidate_for_date(
        self,
        item_date: Union[date, datetime],
        granularities: Iterable[Union[Granularity, str]],
    ) -> None:
        failures: list[tuple[object, Exception]] = []
        for raw in granularities:
            try:
                period = calculate_period(item_date, raw)
            except InvalidGranularity as exc:
                logger.warning(
                    f"summary_invalidation_skipped: granularity={raw} "
                    f"item_date={item_date} error={exc}"
                )
                failures.append((raw, exc))
                continue

            stmt = delete(FinancialSummary).where(
                FinancialSummary.granularity == period.granularity,
                FinancialSummary.period_start == period.start,
            )
            try:
                result = self.session.execute(stmt)
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error(
                    f"summary_invalidation_failed: "
                    f"granularity={period.granularity.value} "
                    f"period_start={period.start} error={exc}"
                )
                failures.append((period.granularity.value, StorageError(str(exc))))
                continue

            if result.rowcount:
                logger.info(
                    f"summary_invalidated: granularity={period.granularity.value} "
                    f"period_start={period.start} item_date={item_date}"
                )

        if failures:
            raise PartialInvalidationFailure(failures)


def invalidate_summaries(
    session_factory: Optional[Callable[[], Session]],
    item_dates: Iterable[Optional[date]],
) -> None:
    """Drop cached summaries covering ``item_dates`` in every granularity.

    Runs detached from the request that changed the transactions; failures
    are logged and not re-raised.
    """
    for item_date in sorted({d for d in item_dates if d is not None}):
        try:
            with session_scope(session_factory) as session:
                SummaryService(session).invalidate_for_date(
                    item_date, ALL_GRANULARITIES
                )
        except PartialInvalidationFailure as exc:
            logger.error(
                f"summary_invalidation_partial: item_date={item_date} error={exc}"
            )
        except SQLAlchemyError as exc:
            logger.error(
                f"summary_invalidation_failed: item_date={item_date} error={exc}"
            )


class TransactionService:
    model: type[TransactionMixin]
    label = "Transaction"
    _required = ("amount", "category", "date")

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: TransactionIn) -> TransactionMixin:
        record = self.model(
            amount=data.amount,
            category=data.category.strip(),
            date=data.date,
            note=data.note,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def get(self, record_id: int) -> TransactionMixin:
        record = self.session.get(self.model, record_id)
        if not record:
            raise ValueError(f"{self.label} record not found")
        return record

    def list(
        self,
        *,
        offset: int = 0,
        limit: int = 10,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[TransactionMixin]:
        stmt = select(self.model)
        if start:
            stmt = stmt.where(self.model.date >= start)
        if end:
            stmt = stmt.where(self.model.date <= end)
        stmt = (
            stmt.order_by(
                self.model.date.desc(),
                self.model.created_at.desc(),
                self.model.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def between(self, start: date, end: date) -> list[TransactionMixin]:
        stmt = (
            select(self.model)
            .where(self.model.date >= start, self.model.date <= end)
            .order_by(self.model.date, self.model.id)
        )
        return list(self.session.scalars(stmt).all())

    def update(self, record_id: int, data: TransactionUpdate) -> TransactionMixin:
        record = self.get(record_id)
        changes = data.model_dump(exclude_unset=True)
        for field in self._required:
            if changes.get(field, "") is None:
                changes.pop(field)
        if "category" in changes:
            changes["category"] = changes["category"].strip()
        for field, value in changes.items():
            setattr(record, field, value)
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, record_id: int) -> date:
        record = self.get(record_id)
        item_date = record.date
        self.session.delete(record)
        self.session.commit()
        return item_date


class IncomeService(TransactionService):
    model = Income
    label = "Income"


class ExpenseService(TransactionService):
    model = Expense
    label = "Expense"


class DebtService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: DebtIn) -> Debt:
        debt = Debt(
            debtor_name=data.debtor_name.strip(),
            description=data.description,
            amount=data.amount,
            due_date=data.due_date,
            status=data.status,
        )
        self.session.add(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def get(self, debt_id: int) -> Debt:
        debt = self.session.get(Debt, debt_id)
        if not debt:
            raise ValueError("Debt record not found")
        return debt

    def list(
        self,
        *,
        offset: int = 0,
        limit: int = 10,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        stmt = select(Debt)
        if status is not None:
            stmt = stmt.where(Debt.status == status)
        stmt = stmt.order_by(Debt.due_date, Debt.id).offset(offset).limit(limit)
        return list(self.session.scalars(stmt).all())

    def update(self, debt_id: int, data: DebtUpdate) -> Debt:
        debt = self.get(debt_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("debtor_name", "amount", "due_date", "status"):
            if changes.get(field, "") is None:
                changes.pop(field)
        for field, value in changes.items():
            setattr(debt, field, value)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def delete(self, debt_id: int) -> None:
        debt = self.get(debt_id)
        self.session.delete(debt)
        self.session.commit()


class SavingsGoalService:
    def __init__(self, session: Session, today: Optional[date] = None) -> None:
        self.session = session
        self.today = today

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            goal_name=data.goal_name.strip(),
            goal_amount=data.goal_amount,
            current_amount=data.current_amount,
            start_date=data.start_date
            or self.today
            or today_in(get_settings().timezone),
            target_date=data.target_date,
            notes=data.notes,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal:
            raise ValueError("Savings goal not found")
        return goal

    def list(self, *, offset: int = 0, limit: int = 10) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .order_by(
                SavingsGoal.target_date.is_(None),
                SavingsGoal.target_date,
                SavingsGoal.created_at.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def update(self, goal_id: int, data: SavingsGoalUpdate) -> SavingsGoal:
        goal = self.get(goal_id)
        # Explicit nulls clear the optional dates and notes.
        changes = data.model_dump(exclude_unset=True)
        for field in ("goal_name", "goal_amount", "current_amount"):
            if changes.get(field, "") is None:
                changes.pop(field)
        for field, value in changes.items():
            setattr(goal, field, value)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total_amount: Decimal


@dataclass(frozen=True)
class MonthlyTrend:
    month: str
    total_income: Decimal
    total_expenses: Decimal


class AnalyticsService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.summaries = SummaryService(session)

    def expense_breakdown(self, target: date) -> list[CategoryTotal]:
        period = calculate_period(target, Granularity.monthly)
        total = func.sum(Expense.amount).label("total_amount")
        stmt = (
            select(Expense.category, total)
            .where(Expense.date >= period.start, Expense.date <= period.end)
            .group_by(Expense.category)
            .order_by(total.desc(), Expense.category)
        )
        rows = self.session.execute(stmt).all()
        return [CategoryTotal(row.category, to_money(row.total_amount)) for row in rows]

    @staticmethod
    def _add_months(d: date, count: int) -> date:
        month_index = d.month - 1 + count
        year = d.year + month_index // 12
        return date(year, month_index % 12 + 1, 1)

    def income_expense_trend(
        self, months: int, *, today: Optional[date] = None
    ) -> list[MonthlyTrend]:
        today = today or today_in(get_settings().timezone)
        first = today.replace(day=1)
        trend: list[MonthlyTrend] = []
        for offset in range(months - 1, -1, -1):
            period = calculate_period(
                self._add_months(first, -offset), Granularity.monthly
            )
            trend.append(
                MonthlyTrend(
                    month=period.start.strftime("%Y-%m"),
                    total_income=self.summaries.sum_amount(
                        Income, period.start, period.end
                    ),
                    total_expenses=self.summaries.sum_amount(
                        Expense, period.start, period.end
                    ),
                )
            )
        return trend


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def transactions_csv(self, start: date, end: date) -> str:
        if start > end:
            raise ValueError("startDate cannot be after endDate.")
        incomes = IncomeService(self.session).between(start, end)
        expenses = ExpenseService(self.session).between(start, end)
        return export_transactions(incomes, expenses)

    @staticmethod
    def filename(start: date, end: date) -> str:
        return f"financial_report_{start:%Y%m%d}_to_{end:%Y%m%d}.csv"


class ReminderService:
    def __init__(self, session: Session, lookahead_days: Optional[int] = None) -> None:
        self.session = session
        self.lookahead_days = (
            lookahead_days
            if lookahead_days is not None
            else get_settings().reminder_lookahead_days
        )

    def upcoming_debts(self, today: date) -> list[Debt]:
        horizon = today + timedelta(days=self.lookahead_days)
        stmt = (
            select(Debt)
            .where(
                Debt.status == DebtStatus.pending,
                Debt.due_date >= today,
                Debt.due_date <= horizon,
            )
            .order_by(Debt.due_date, Debt.id)
        )
        return list(self.session.scalars(stmt).all())

    def approaching_goals(self, today: date) -> list[SavingsGoal]:
        horizon = today + timedelta(days=self.lookahead_days)
        stmt = (
            select(SavingsGoal)
            .where(
                SavingsGoal.target_date.is_not(None),
                SavingsGoal.target_date >= today,
                SavingsGoal.target_date <= horizon,
                SavingsGoal.current_amount < SavingsGoal.goal_amount,
            )
            .order_by(SavingsGoal.target_date, SavingsGoal.id)
        )
        return list(self.session.scalars(stmt).all())

    def check_due_dates_and_goals(self, today: Optional[date] = None) -> list[str]:
        today = today or today_in(get_settings().timezone)
        logger.info(f"reminder_scan: start today={today} days={self.lookahead_days}")
        messages: list[str] = []

        debts = self.upcoming_debts(today)
        if not debts:
            logger.info("reminder_scan: no upcoming debts")
        for debt in debts:
            messages.append(
                f"Reminder: Debt for '{debt.debtor_name}' of amount "
                f"{to_money(debt.amount)} is due on {debt.due_date.isoformat()}."
            )

        goals = self.approaching_goals(today)
        if not goals:
            logger.info("reminder_scan: no savings goals approaching target date")
        for goal in goals:
            messages.append(
                f"Reminder: Savings goal '{goal.goal_name}' "
                f"(Target: {to_money(goal.goal_amount)}, "
                f"Current: {to_money(goal.current_amount)}) is approaching its "
                f"target date {goal.target_date.isoformat()}."
            )

        for message in messages:
            logger.info(message)
        logger.info(
            f"reminder_scan: done debts={len(debts)} savings_goals={len(goals)}"
        )
        return messages

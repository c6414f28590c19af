from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from models import Expense, FinancialSummary, Income
from periods import Granularity, InvalidGranularity, calculate_period
from services import (
    InvalidView,
    PartialInvalidationFailure,
    StorageError,
    SummaryService,
    ViewNotImplemented,
    invalidate_summaries,
)

DAY = timedelta(days=1)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _seed_april(session: Session) -> date:
    day = date(2023, 4, 10)
    session.add_all(
        [
            Income(amount=Decimal("1000"), category="Salary", date=day + DAY * 5),
            Income(amount=Decimal("500"), category="Bonus", date=day + DAY * 15),
            Expense(amount=Decimal("300"), category="Rent", date=day + DAY * 10),
            Expense(amount=Decimal("200"), category="Food", date=day + DAY * 20),
        ]
    )
    session.commit()
    return day


def _cached_rows(session: Session, granularity: Granularity, start: date) -> int:
    return session.execute(
        select(func.count(FinancialSummary.id)).where(
            FinancialSummary.granularity == granularity,
            FinancialSummary.period_start == start,
        )
    ).scalar_one()


def test_overall_summary_is_computed_and_cached():
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)
        service = SummaryService(session)

        summary = service.get_or_create_summary("monthly", day, "overall")
        assert summary.granularity is Granularity.monthly
        assert summary.period_start == date(2023, 4, 1)
        assert summary.period_end == date(2023, 4, 30)
        assert summary.total_income == Decimal("1500")
        assert summary.total_expenses == Decimal("500")
        assert summary.net_balance == Decimal("1000")
        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 1


def test_cached_summary_wins_until_invalidated():
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)
        service = SummaryService(session)
        service.get_or_create_summary("monthly", day)

        session.add(Income(amount=Decimal("250"), category="Gift", date=day))
        session.commit()

        again = service.get_or_create_summary("monthly", day, "overall")
        assert again.total_income == Decimal("1500")
        assert again.net_balance == Decimal("1000")
        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 1

        service.invalidate_for_date(day, ["monthly"])
        fresh = service.get_or_create_summary("monthly", day)
        assert fresh.total_income == Decimal("1750")
        assert fresh.net_balance == Decimal("1250")


def test_income_and_expense_views_are_never_persisted():
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)
        service = SummaryService(session)

        income = service.get_or_create_summary("monthly", day, "income")
        assert income.total_income == Decimal("1500")
        assert income.total_expenses == Decimal("0")
        assert income.net_balance == Decimal("1500")

        expenses = service.get_or_create_summary("monthly", day, "expenses")
        assert expenses.total_income == Decimal("0")
        assert expenses.total_expenses == Decimal("500")
        assert expenses.net_balance == Decimal("-500")

        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 0
        assert income not in session
        assert expenses not in session


def test_partial_view_ignores_existing_cache_row():
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)
        service = SummaryService(session)
        service.get_or_create_summary("monthly", day, "overall")

        session.add(Expense(amount=Decimal("100"), category="Taxi", date=day))
        session.commit()

        expenses = service.get_or_create_summary("monthly", day, "expenses")
        assert expenses.total_expenses == Decimal("600")
        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 1


@pytest.mark.parametrize("view", ["savings", "debts"])
def test_reserved_views_are_not_implemented(view):
    engine = _engine()
    with Session(engine) as session:
        with pytest.raises(ViewNotImplemented):
            SummaryService(session).get_or_create_summary(
                "weekly", date(2024, 1, 3), view
            )


def test_unknown_view_and_granularity_are_rejected():
    engine = _engine()
    with Session(engine) as session:
        service = SummaryService(session)
        with pytest.raises(InvalidView):
            service.get_or_create_summary("weekly", date(2024, 1, 3), "forecast")
        with pytest.raises(InvalidGranularity):
            service.get_or_create_summary("daily", date(2024, 1, 3), "overall")
        assert session.scalar(select(func.count(FinancialSummary.id))) == 0


def test_empty_view_defaults_to_overall():
    engine = _engine()
    with Session(engine) as session:
        summary = SummaryService(session).get_or_create_summary(
            Granularity.yearly, date(2024, 6, 1), None
        )
        assert summary.total_income == Decimal("0")
        assert summary.id is not None


def test_sum_amount_uses_inclusive_bounds_and_zero_for_empty_ranges():
    engine = _engine()
    with Session(engine) as session:
        session.add_all(
            [
                Income(amount=Decimal("10.25"), category="A", date=date(2024, 2, 5)),
                Income(amount=Decimal("20.50"), category="B", date=date(2024, 2, 11)),
                Income(amount=Decimal("99"), category="C", date=date(2024, 2, 12)),
            ]
        )
        session.commit()
        service = SummaryService(session)
        week = calculate_period(date(2024, 2, 8), "weekly")

        assert service.sum_amount(Income, week.start, week.end) == Decimal("30.75")
        empty = service.sum_amount(Expense, week.start, week.end)
        assert empty == Decimal("0.00")
        assert isinstance(empty, Decimal)


def test_insert_conflict_rereads_existing_row(monkeypatch):
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)
        session.add(
            FinancialSummary(
                granularity=Granularity.monthly,
                period_start=date(2023, 4, 1),
                period_end=date(2023, 4, 30),
                total_income=Decimal("42"),
                total_expenses=Decimal("2"),
                net_balance=Decimal("40"),
            )
        )
        session.commit()

        original = SummaryService._fetch_cached
        calls = []

        def racing_fetch(self, granularity, period_start):
            calls.append(period_start)
            if len(calls) == 1:
                return None
            return original(self, granularity, period_start)

        monkeypatch.setattr(SummaryService, "_fetch_cached", racing_fetch)

        summary = SummaryService(session).get_or_create_summary("monthly", day)
        assert len(calls) == 2
        assert summary.total_income == Decimal("42")
        assert summary.net_balance == Decimal("40")
        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 1


def test_storage_faults_surface_as_storage_error(monkeypatch):
    engine = _engine()
    with Session(engine) as session:
        def broken_execute(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "execute", broken_execute)
        with pytest.raises(StorageError) as excinfo:
            SummaryService(session).get_or_create_summary(
                "monthly", date(2024, 1, 1), "income"
            )
        assert "disk" not in str(excinfo.value)


def _cache_all(session: Session, day: date) -> None:
    service = SummaryService(session)
    for granularity in Granularity:
        service.get_or_create_summary(granularity, day)


def test_invalidation_only_touches_requested_granularity():
    engine = _engine()
    with Session(engine) as session:
        day = date(2024, 5, 15)
        _cache_all(session, day)

        SummaryService(session).invalidate_for_date(day, ["monthly"])

        assert _cached_rows(session, Granularity.monthly, date(2024, 5, 1)) == 0
        assert _cached_rows(session, Granularity.weekly, date(2024, 5, 13)) == 1
        assert _cached_rows(session, Granularity.yearly, date(2024, 1, 1)) == 1


def test_invalidation_with_no_granularities_deletes_nothing():
    engine = _engine()
    with Session(engine) as session:
        day = date(2024, 5, 15)
        _cache_all(session, day)
        SummaryService(session).invalidate_for_date(day, [])
        assert session.scalar(select(func.count(FinancialSummary.id))) == 3


def test_invalidation_is_idempotent_and_tolerates_missing_rows():
    engine = _engine()
    with Session(engine) as session:
        service = SummaryService(session)
        service.invalidate_for_date(date(2030, 1, 1), list(Granularity))

        _cache_all(session, date(2024, 5, 15))
        service.invalidate_for_date(date(2024, 5, 19), list(Granularity))
        service.invalidate_for_date(date(2024, 5, 19), list(Granularity))
        assert session.scalar(select(func.count(FinancialSummary.id))) == 0


def test_invalid_granularity_does_not_abort_remaining_invalidations():
    engine = _engine()
    with Session(engine) as session:
        day = date(2024, 5, 15)
        _cache_all(session, day)

        with pytest.raises(PartialInvalidationFailure) as excinfo:
            SummaryService(session).invalidate_for_date(
                day, ["fortnightly", "weekly", "yearly"]
            )
        assert len(excinfo.value.failures) == 1
        assert "fortnightly" in str(excinfo.value)
        assert _cached_rows(session, Granularity.weekly, date(2024, 5, 13)) == 0
        assert _cached_rows(session, Granularity.yearly, date(2024, 1, 1)) == 0
        assert _cached_rows(session, Granularity.monthly, date(2024, 5, 1)) == 1


def test_background_invalidation_clears_every_granularity_for_each_date():
    engine = _engine()
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    with factory() as session:
        _cache_all(session, date(2024, 5, 15))
        _cache_all(session, date(2025, 8, 2))

    invalidate_summaries(factory, [date(2024, 5, 15), None])

    with factory() as session:
        remaining = session.scalars(select(FinancialSummary)).all()
        assert len(remaining) == 3
        assert {row.period_start.year for row in remaining} == {2025}

    invalidate_summaries(factory, [date(2025, 8, 2), date(2025, 8, 2)])

    with factory() as session:
        assert session.scalar(select(func.count(FinancialSummary.id))) == 0


def test_failed_summary_insert_raises_storage_error_and_leaves_no_row(monkeypatch):
    engine = _engine()
    with Session(engine) as session:
        day = _seed_april(session)

        def broken_commit():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", broken_commit)
        with pytest.raises(StorageError) as excinfo:
            SummaryService(session).get_or_create_summary("monthly", day, "overall")

        assert "locked" not in str(excinfo.value)
        assert not session.new
        assert _cached_rows(session, Granularity.monthly, date(2023, 4, 1)) == 0


def test_background_invalidation_logs_partial_failures(monkeypatch, caplog):
    engine = _engine()
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    seen = []

    def failing_invalidation(self, item_date, granularities):
        seen.append(item_date)
        raise PartialInvalidationFailure([("weekly", StorageError("x"))])

    monkeypatch.setattr(SummaryService, "invalidate_for_date", failing_invalidation)

    with caplog.at_level("ERROR", logger="services"):
        invalidate_summaries(factory, [date(2024, 1, 2), date(2024, 1, 1)])

    assert seen == [date(2024, 1, 1), date(2024, 1, 2)]
    messages = [record.getMessage() for record in caplog.records]
    assert any(
        m.startswith("summary_invalidation_partial: item_date=2024-01-01")
        and "weekly: x" in m
        for m in messages
    )


def test_background_invalidation_logs_session_failures(caplog):
    def broken_factory():
        raise OperationalError("CONNECT", {}, Exception("unable to open database"))

    with caplog.at_level("ERROR", logger="services"):
        invalidate_summaries(broken_factory, [date(2024, 3, 3)])

    assert any(
        record.getMessage().startswith(
            "summary_invalidation_failed: item_date=2024-03-03"
        )
        for record in caplog.records
    )

from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Debt, DebtStatus, SavingsGoal
from services import ReminderService


def _seed(session: Session) -> None:
    session.add_all(
        [
            Debt(
                debtor_name="Landlord",
                amount=Decimal("900"),
                due_date=date(2024, 3, 5),
                status=DebtStatus.pending,
            ),
            Debt(
                debtor_name="Friend",
                amount=Decimal("40"),
                due_date=date(2024, 3, 4),
                status=DebtStatus.paid,
            ),
            Debt(
                debtor_name="Bank",
                amount=Decimal("300"),
                due_date=date(2024, 3, 20),
                status=DebtStatus.pending,
            ),
            Debt(
                debtor_name="Old",
                amount=Decimal("10"),
                due_date=date(2024, 2, 28),
                status=DebtStatus.pending,
            ),
            SavingsGoal(
                goal_name="Laptop",
                goal_amount=Decimal("1500"),
                current_amount=Decimal("1000"),
                target_date=date(2024, 3, 8),
            ),
            SavingsGoal(
                goal_name="Bike",
                goal_amount=Decimal("500"),
                current_amount=Decimal("500"),
                target_date=date(2024, 3, 6),
            ),
            SavingsGoal(
                goal_name="Someday",
                goal_amount=Decimal("500"),
                current_amount=Decimal("0"),
            ),
        ]
    )
    session.commit()


def test_reminders_cover_pending_debts_and_unmet_goals_in_window(caplog) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = ReminderService(session, lookahead_days=7)

        with caplog.at_level("INFO", logger="services"):
            messages = service.check_due_dates_and_goals(today=date(2024, 3, 1))

        assert messages == [
            "Reminder: Debt for 'Landlord' of amount 900.00 is due on 2024-03-05.",
            "Reminder: Savings goal 'Laptop' (Target: 1500.00, Current: 1000.00) "
            "is approaching its target date 2024-03-08.",
        ]
        assert any("Landlord" in record.getMessage() for record in caplog.records)


def test_reminder_window_edges_are_inclusive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = ReminderService(session, lookahead_days=4)
        assert [d.debtor_name for d in service.upcoming_debts(date(2024, 3, 1))] == [
            "Landlord"
        ]
        assert [d.debtor_name for d in service.upcoming_debts(date(2024, 3, 16))] == [
            "Bank"
        ]
        assert service.approaching_goals(date(2024, 3, 1)) == []


def test_no_reminders_when_nothing_is_due() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        assert ReminderService(session, lookahead_days=7).check_due_dates_and_goals(
            today=date(2024, 3, 1)
        ) == []

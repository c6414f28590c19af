"""initial schema

Revision ID: 202611010900
Revises:
Create Date: 2026-11-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202611010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _transaction_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name=f"ck_{name}_amount_positive"),
    )
    op.create_index(f"ix_{name}_date", name, ["date"])


def upgrade():
    _transaction_table("incomes")
    _transaction_table("expenses")
    op.create_index("ix_expenses_category_date", "expenses", ["category", "date"])

    op.create_table(
        "financial_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "granularity",
            sa.Enum("weekly", "monthly", "yearly", name="granularity"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column(
            "total_income", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_expenses", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "net_balance", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "granularity", "period_start", name="uq_summary_granularity_period"
        ),
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("debtor_name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("Pending", "Paid", "Overdue", name="debtstatus"),
            nullable=False,
            server_default="Pending",
        ),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
    )
    op.create_index("ix_debts_status_due", "debts", ["status", "due_date"])

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("goal_name", sa.String(length=120), nullable=False),
        sa.Column("goal_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "current_amount", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("start_date", sa.Date()),
        sa.Column("target_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("goal_amount > 0", name="ck_savings_goal_amount_positive"),
        sa.CheckConstraint(
            "current_amount >= 0", name="ck_savings_current_amount_non_negative"
        ),
    )


def downgrade():
    op.drop_table("savings_goals")
    op.drop_index("ix_debts_status_due", table_name="debts")
    op.drop_table("debts")
    op.drop_table("financial_summaries")
    op.drop_index("ix_expenses_category_date", table_name="expenses")
    for name in ("expenses", "incomes"):
        op.drop_index(f"ix_{name}_date", table_name=name)
        op.drop_table(name)

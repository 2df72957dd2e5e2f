"""initial welth schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(length=120), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=120)),
        sa.Column("image_url", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("current", "savings", name="accounttype"), nullable=False
        ),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])
    op.create_index(
        "uq_accounts_user_default",
        "accounts",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("receipt_url", sa.Text()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "recurring_interval",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurringinterval"),
        ),
        sa.Column("next_recurring_date", sa.Date()),
        sa.Column("last_processed", sa.DateTime()),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", "cancelled", name="transactionstatus"),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_account_type_date",
        "transactions",
        ["account_id", "type", "date"],
    )
    op.create_index(
        "ix_transactions_recurring_due",
        "transactions",
        ["is_recurring", "status", "next_recurring_date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("last_alert_sent", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )


def downgrade():
    op.drop_table("budgets")
    op.drop_index("ix_transactions_recurring_due", table_name="transactions")
    op.drop_index("ix_transactions_account_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_accounts_user_default", table_name="accounts")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")

"""Initial schema: members, account details, expenses, splits and payments.

Revision ID: 20251019_000001
Revises:
Create Date: 2025-10-19 00:00:01.000000
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20251019_000001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


split_type_enum = sa.Enum("equal", "custom", name="splittype")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)

    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column("group_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.telegram_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("registered_by", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])

    op.create_table(
        "account_details",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.telegram_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("payment_type", sa.String(length=32), nullable=False, server_default=sa.text("'bank'")),
        sa.Column("account_info", sa.String(length=512), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_account_details_user_id", "account_details", ["user_id"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column("group_id", sa.BigInteger(), nullable=False),
        sa.Column("group_expense_number", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        sa.Column("paid_by", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("photo_ref", sa.String(length=512), nullable=True),
        sa.Column("vendor_slip_ref", sa.String(length=512), nullable=True),
        sa.Column("split_type", split_type_enum, nullable=False),
        sa.UniqueConstraint("group_id", "group_expense_number", name="uq_expenses_group_number"),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("amount_owed", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_expense_splits_expense_id", "expense_splits", ["expense_id"])
    op.create_index("ix_expense_splits_user_id", "expense_splits", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column(
            "expense_split_id",
            sa.Integer(),
            sa.ForeignKey("expense_splits.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("paid_by", sa.BigInteger(), nullable=False),
        sa.Column("paid_to", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("proof_ref", sa.String(length=512), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_payments_expense_split_id", "payments", ["expense_split_id"])


def downgrade() -> None:
    op.drop_index("ix_payments_expense_split_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_expense_splits_user_id", table_name="expense_splits")
    op.drop_index("ix_expense_splits_expense_id", table_name="expense_splits")
    op.drop_table("expense_splits")
    op.drop_index("ix_expenses_group_id", table_name="expenses")
    op.drop_table("expenses")
    split_type_enum.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_account_details_user_id", table_name="account_details")
    op.drop_table("account_details")
    op.drop_index("ix_group_members_group_id", table_name="group_members")
    op.drop_table("group_members")
    op.drop_index("ix_users_telegram_id", table_name="users")
    op.drop_table("users")

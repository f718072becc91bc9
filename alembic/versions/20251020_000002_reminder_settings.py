"""Reminder settings: per-group daily reminder switch.

Revision ID: 20251020_000002
Revises: 20251019_000001
Create Date: 2025-10-20 00:00:02.000000
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20251020_000002"
down_revision: str | None = "20251019_000001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "reminder_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("group_id", sa.BigInteger(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_reminder_settings_group_id", "reminder_settings", ["group_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_reminder_settings_group_id", table_name="reminder_settings")
    op.drop_table("reminder_settings")

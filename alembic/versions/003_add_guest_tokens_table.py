"""Add guest_tokens table for review and manage-booking links

Revision ID: 003_add_guest_tokens
Revises: 002_add_cron_job_runs
Create Date: 2025-03-02

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "003_add_guest_tokens"
down_revision: str = "002_add_cron_job_runs"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "guest_tokens",
        sa.Column("hashed_token", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(40), nullable=False),
        sa.Column("event_booking_id", sa.String(36), nullable=True),
        sa.Column("table_booking_id", sa.String(36), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("hashed_token"),
    )
    op.create_index("ix_guest_tokens_customer_id", "guest_tokens", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_guest_tokens_customer_id", table_name="guest_tokens")
    op.drop_table("guest_tokens")

"""Add event_interest_manual_recipients table

Revision ID: 004_add_manual_interest
Revises: 003_add_guest_tokens
Create Date: 2025-03-16

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "004_add_manual_interest"
down_revision: str = "003_add_guest_tokens"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "event_interest_manual_recipients",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("customer_id", sa.String(36), nullable=False),
        sa.Column("reminder_14d_sent_at", sa.DateTime(), nullable=True),
        sa.Column("reminder_7d_sent_at", sa.DateTime(), nullable=True),
        sa.Column("reminder_1d_sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "customer_id", name="uq_event_interest_manual_recipient"),
    )
    op.create_index(
        "ix_event_interest_manual_recipients_event_id", "event_interest_manual_recipients", ["event_id"]
    )
    op.create_index(
        "ix_event_interest_manual_recipients_customer_id",
        "event_interest_manual_recipients",
        ["customer_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_event_interest_manual_recipients_customer_id", table_name="event_interest_manual_recipients"
    )
    op.drop_index(
        "ix_event_interest_manual_recipients_event_id", table_name="event_interest_manual_recipients"
    )
    op.drop_table("event_interest_manual_recipients")

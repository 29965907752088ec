"""Add cron_job_runs table for the run ledger

Revision ID: 002_add_cron_job_runs
Revises: 001_initial
Create Date: 2025-02-17

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_add_cron_job_runs"
down_revision: str = "001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cron_job_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_name", sa.String(100), nullable=False),
        sa.Column("run_key", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_name", "run_key", name="uq_cron_job_runs_job_run_key"),
    )
    op.create_index("ix_cron_job_runs_job_name", "cron_job_runs", ["job_name"])
    op.create_index("ix_cron_job_runs_status", "cron_job_runs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_cron_job_runs_status", table_name="cron_job_runs")
    op.drop_index("ix_cron_job_runs_job_name", table_name="cron_job_runs")
    op.drop_table("cron_job_runs")

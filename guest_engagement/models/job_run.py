"""Cron run ledger model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base, TimestampMixin, UpdatedAtMixin


class CronRunStatus:
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CronJobRun(Base, TimestampMixin, UpdatedAtMixin):
    """One attempt to execute a named scheduled job in a run-key time bucket.

    The unique (job_name, run_key) pair is what makes two triggers inside the
    same bucket collide; the staleness check on ``started_at`` lets a later
    invocation reclaim a row abandoned by a crashed run.
    """

    __tablename__ = "cron_job_runs"
    __table_args__ = (UniqueConstraint("job_name", "run_key", name="uq_cron_job_runs_job_run_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    job_name: Mapped[str] = mapped_column(String(100), index=True)
    run_key: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(20), index=True)  # running, completed, failed
    started_at: Mapped[datetime | None] = mapped_column(default=None)
    finished_at: Mapped[datetime | None] = mapped_column(default=None)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CronJobRun {self.job_name}:{self.run_key} {self.status}>"

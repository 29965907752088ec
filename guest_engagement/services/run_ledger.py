"""
Run ledger for scheduled jobs.

Every trigger of a job claims a ``cron_job_runs`` row keyed by
(job name, run key). The unique constraint on that pair decides which of
several overlapping triggers gets to run; compare-and-swap updates decide who
may reclaim a row left behind by a crashed run.

Usage:
    acquisition = await acquire_run(db, "event-guest-engagement", make_run_key())
    if acquisition.should_run:
        ...
        await resolve_run(db, acquisition.run_id, CronRunStatus.COMPLETED)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import Row, and_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import get_config
from guest_engagement.core.datetime_utils import bucket_run_key, utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.models.job_run import CronJobRun, CronRunStatus

logger = get_logger(__name__)

STALE_RUN_MESSAGE = "Marked stale by newer invocation"
MAX_ERROR_MESSAGE_LENGTH = 500

# Dialects whose INSERT supports ON CONFLICT DO NOTHING ... RETURNING
_CONFLICT_INSERTS: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SkipReason:
    ALREADY_RUNNING = "already_running"
    ALREADY_COMPLETED = "already_completed"


@dataclass
class RunAcquisition:
    """Result of trying to claim a run."""

    should_run: bool
    run_key: str
    run_id: str | None = None
    skip_reason: str | None = None


def make_run_key(now: datetime | None = None) -> str:
    """Run key for ``now``: venue-local wall clock bucketed to the run interval."""
    engagement = get_config().engagement
    return bucket_run_key(
        now or utc_now(),
        interval_minutes=engagement.run_key_interval_minutes,
        timezone=engagement.timezone,
    )


def is_run_stale(started_at: datetime | None, now: datetime, stale_minutes: int | None = None) -> bool:
    """A running row is stale once it has been running longer than the threshold.

    A row without ``started_at`` can never be proven fresh, so it counts as stale.
    """
    if started_at is None:
        return True
    if stale_minutes is None:
        stale_minutes = get_config().engagement.stale_run_minutes
    return now - started_at > timedelta(minutes=stale_minutes)


async def _latest_running(db: AsyncSession, job_name: str) -> Row | None:
    result = await db.execute(
        select(CronJobRun.id, CronJobRun.status, CronJobRun.started_at)
        .where(CronJobRun.job_name == job_name, CronJobRun.status == CronRunStatus.RUNNING)
        .order_by(CronJobRun.started_at.desc())
        .limit(1)
    )
    return result.first()


async def _get_run(db: AsyncSession, job_name: str, run_key: str) -> Row | None:
    result = await db.execute(
        select(CronJobRun.id, CronJobRun.status, CronJobRun.started_at).where(
            CronJobRun.job_name == job_name, CronJobRun.run_key == run_key
        )
    )
    return result.first()


def _unchanged_since(observed: Row) -> Any:
    """Match the row only while its status and ``started_at`` are as observed."""
    started_match = (
        CronJobRun.started_at.is_(None)
        if observed.started_at is None
        else CronJobRun.started_at == observed.started_at
    )
    return and_(CronJobRun.id == observed.id, CronJobRun.status == observed.status, started_match)


async def _mark_stale(db: AsyncSession, observed: Row, now: datetime) -> bool:
    """Fail an abandoned running row. Best-effort.

    Returns False if the row changed since it was read (another trigger
    reclaimed it) or the update failed.
    """
    run_id = observed.id
    try:
        result = await db.execute(
            update(CronJobRun)
            .where(_unchanged_since(observed))
            .values(
                status=CronRunStatus.FAILED,
                finished_at=now,
                error_message=STALE_RUN_MESSAGE,
                updated_at=now,
            )
            .returning(CronJobRun.id)
            .execution_options(synchronize_session=False)
        )
        marked = result.scalar_one_or_none() is not None
        await db.commit()
    except Exception as e:
        logger.bind(run_id=run_id, error=str(e)).error("cron_run_mark_stale_failed")
        await db.rollback()
        return False

    if marked:
        logger.bind(run_id=run_id).warning("cron_run_marked_stale")
    else:
        logger.bind(run_id=run_id).info("cron_run_stale_row_changed")
    return marked


async def _insert_running(db: AsyncSession, job_name: str, run_key: str, now: datetime) -> str | None:
    """Insert a running row; returns its id, or None when the key is already taken."""
    dialect = db.get_bind().dialect.name
    insert = _CONFLICT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Run ledger does not support the {dialect} dialect")

    stmt = (
        insert(CronJobRun)
        .values(
            id=str(uuid4()),
            job_name=job_name,
            run_key=run_key,
            status=CronRunStatus.RUNNING,
            started_at=now,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["job_name", "run_key"])
        .returning(CronJobRun.id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _restart(db: AsyncSession, observed: Row, now: datetime) -> bool:
    """Compare-and-swap an observed row back to running.

    Only succeeds if nobody touched the row since it was read: the status and
    ``started_at`` must still match what we saw.
    """
    result = await db.execute(
        update(CronJobRun)
        .where(_unchanged_since(observed))
        .values(
            status=CronRunStatus.RUNNING,
            started_at=now,
            finished_at=None,
            error_message=None,
            updated_at=now,
        )
        .returning(CronJobRun.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


def _skip_for(row: Row | None, now: datetime, stale_minutes: int) -> str | None:
    """Skip reason implied by an existing row, or None if it may be reclaimed."""
    if row is None:
        return SkipReason.ALREADY_RUNNING
    if row.status == CronRunStatus.COMPLETED:
        return SkipReason.ALREADY_COMPLETED
    if row.status == CronRunStatus.RUNNING and not is_run_stale(row.started_at, now, stale_minutes):
        return SkipReason.ALREADY_RUNNING
    return None


async def acquire_run(
    db: AsyncSession,
    job_name: str,
    run_key: str,
    now: datetime | None = None,
    stale_minutes: int | None = None,
) -> RunAcquisition:
    """Claim the (job_name, run_key) run.

    Commits before returning so that a concurrent trigger sees the claim.
    """
    now = now or utc_now()
    if stale_minutes is None:
        stale_minutes = get_config().engagement.stale_run_minutes
    log = logger.bind(job_name=job_name, run_key=run_key)

    def skipped(reason: str) -> RunAcquisition:
        log.bind(reason=reason).info("cron_run_skipped")
        return RunAcquisition(should_run=False, run_key=run_key, skip_reason=reason)

    def acquired(run_id: str, how: str) -> RunAcquisition:
        log.bind(run_id=run_id, how=how).info("cron_run_acquired")
        return RunAcquisition(should_run=True, run_key=run_key, run_id=run_id)

    latest = await _latest_running(db, job_name)
    if latest is not None:
        if not is_run_stale(latest.started_at, now, stale_minutes):
            await db.commit()
            return skipped(SkipReason.ALREADY_RUNNING)
        if not await _mark_stale(db, latest, now):
            # Someone else reclaimed it first; only go ahead if nothing fresh is running now
            current = await _latest_running(db, job_name)
            if current is not None and not is_run_stale(current.started_at, now, stale_minutes):
                await db.commit()
                return skipped(SkipReason.ALREADY_RUNNING)

    run_id = await _insert_running(db, job_name, run_key, now)
    if run_id is not None:
        await db.commit()
        return acquired(run_id, "inserted")

    existing = await _get_run(db, job_name, run_key)
    reason = _skip_for(existing, now, stale_minutes)
    if reason is not None:
        await db.commit()
        return skipped(reason)

    if await _restart(db, existing, now):
        await db.commit()
        return acquired(existing.id, "restarted")

    # Someone else changed the row between our read and our update
    current = await _get_run(db, job_name, run_key)
    reason = _skip_for(current, now, stale_minutes)
    if reason is None and await _restart(db, current, now):
        await db.commit()
        return acquired(current.id, "recovered")

    await db.commit()
    return skipped(reason or SkipReason.ALREADY_RUNNING)


async def resolve_run(
    db: AsyncSession,
    run_id: str | None,
    status: str,
    error_message: str | None = None,
    now: datetime | None = None,
) -> None:
    """Record the final status of an acquired run. Never raises."""
    if not run_id:
        return

    now = now or utc_now()
    message = error_message[:MAX_ERROR_MESSAGE_LENGTH] if error_message else None
    try:
        await db.execute(
            update(CronJobRun)
            .where(CronJobRun.id == run_id)
            .values(status=status, finished_at=now, error_message=message, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.bind(run_id=run_id, status=status).info("cron_run_resolved")
    except Exception as e:
        logger.bind(run_id=run_id, status=status, error=str(e)).error("cron_run_resolve_failed")
        await db.rollback()

"""Job monitoring API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sqlalchemy import func, select

from guest_engagement.core.scheduler import get_job_schedules
from guest_engagement.dependencies import DBSession
from guest_engagement.models.job_run import CronJobRun, CronRunStatus

router = APIRouter()


class ScheduleResponse(BaseModel):
    """Response model for a job schedule."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class JobRunResponse(BaseModel):
    """Response model for a run ledger row."""

    id: str
    job_name: str
    run_key: str
    status: str
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    error_message: str | None


class JobStatsResponse(BaseModel):
    """Response model for job statistics."""

    job_name: str
    total_runs: int
    completed_runs: int
    failed_runs: int
    running_runs: int
    success_rate: float
    last_run_key: str | None
    last_status: str | None
    last_started_at: datetime | None


def _duration(run: CronJobRun) -> float | None:
    if run.started_at is None or run.finished_at is None:
        return None
    return (run.finished_at - run.started_at).total_seconds()


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """
    List all registered job schedules.

    Returns schedule information including next/last fire times.
    """
    schedules = await get_job_schedules()
    return [ScheduleResponse(**s) for s in schedules]


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    job_name: str | None = Query(default=None, description="Filter by job name"),
    status: str | None = Query(default=None, description="Filter by run status"),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """
    List run ledger history, newest first.
    """
    query = select(CronJobRun).order_by(CronJobRun.created_at.desc(), CronJobRun.run_key.desc())

    if job_name:
        query = query.where(CronJobRun.job_name == job_name)
    if status:
        query = query.where(CronJobRun.status == status)

    query = query.offset(offset).limit(limit)
    result = await db.execute(query)
    runs = result.scalars().all()

    return [
        JobRunResponse(
            id=run.id,
            job_name=run.job_name,
            run_key=run.run_key,
            status=run.status,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_seconds=_duration(run),
            error_message=run.error_message,
        )
        for run in runs
    ]


@router.get("/jobs/stats", response_model=list[JobStatsResponse])
async def get_job_stats(db: DBSession) -> list[JobStatsResponse]:
    """
    Get aggregated statistics for all jobs.

    Returns run counts per status, success rate and the latest run.
    """
    counts_result = await db.execute(
        select(CronJobRun.job_name, CronJobRun.status, func.count(CronJobRun.id)).group_by(
            CronJobRun.job_name, CronJobRun.status
        )
    )
    by_job: dict[str, dict[str, int]] = {}
    for job_name, status, count in counts_result.all():
        by_job.setdefault(job_name, {})[status] = count

    stats = []
    for job_name in sorted(by_job):
        counts = by_job[job_name]
        total = sum(counts.values())
        completed = counts.get(CronRunStatus.COMPLETED, 0)
        failed = counts.get(CronRunStatus.FAILED, 0)

        last_run_result = await db.execute(
            select(CronJobRun)
            .where(CronJobRun.job_name == job_name)
            .order_by(CronJobRun.created_at.desc(), CronJobRun.run_key.desc())
            .limit(1)
        )
        last_run = last_run_result.scalar_one_or_none()

        finished = completed + failed
        stats.append(
            JobStatsResponse(
                job_name=job_name,
                total_runs=total,
                completed_runs=completed,
                failed_runs=failed,
                running_runs=counts.get(CronRunStatus.RUNNING, 0),
                success_rate=completed / finished if finished > 0 else 0.0,
                last_run_key=last_run.run_key if last_run else None,
                last_status=last_run.status if last_run else None,
                last_started_at=last_run.started_at if last_run else None,
            )
        )

    return stats

"""
APScheduler integration for FastAPI.

Runs the event guest engagement job in-process every 15 minutes when
``SCHEDULER_ENABLED`` is set. The run ledger still decides whether a tick
actually runs, so an external cron hitting the HTTP endpoint can coexist
with the in-process schedule.
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from guest_engagement.config import get_config, get_settings
from guest_engagement.core.database import AsyncSessionLocal
from guest_engagement.core.logging import get_logger

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None

ENGAGEMENT_SCHEDULE_ID = "event_guest_engagement"


async def engagement_job() -> None:
    """Scheduled guest engagement run."""
    # Import here to avoid circular imports
    from guest_engagement.jobs.engagement import run_guest_engagement
    from guest_engagement.services.sms_gateway import get_sms_gateway

    logger.debug("scheduled_engagement_job_started")
    async with AsyncSessionLocal() as db:
        try:
            report = await run_guest_engagement(db, get_sms_gateway(db))
            logger.bind(
                run_key=report.run_key,
                skipped=bool(report.skipped),
                aborted=bool(report.aborted),
            ).info("scheduled_engagement_job_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_engagement_job_failed")
            raise  # Re-raise so APScheduler records the failure


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-memory scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    interval = get_config().engagement.run_key_interval_minutes

    # Schedules don't persist across restarts; the run ledger is the durable record
    data_store = MemoryDataStore()
    scheduler = AsyncScheduler(data_store=data_store)

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        engagement_job,
        CronTrigger(minute=f"*/{interval}"),
        id=ENGAGEMENT_SCHEDULE_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[ENGAGEMENT_SCHEDULE_ID], interval_minutes=interval).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]

"""
Event guest engagement job.

Run with: python -m guest_engagement.jobs.engagement

This job:
1. Claims the current run key in the run ledger
2. Checks the recent-send guard
3. Sends event reminders and review follow-ups, and sweeps closed review windows
4. Sends table review follow-ups and sweeps their review windows
5. Sends interest marketing for upcoming events
6. Records the run outcome

A fatal safety signal from the SMS pipeline stops everything that is left and
the run is recorded as failed with the signal code.
"""

import asyncio
import time
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_config, get_settings
from guest_engagement.core.database import AsyncSessionLocal
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger, setup_logging
from guest_engagement.models.job_run import CronRunStatus
from guest_engagement.schemas.engagement import EngagementRunReport
from guest_engagement.services.alerts import alert_operator
from guest_engagement.services.candidates import load_event_bookings, load_table_bookings
from guest_engagement.services.completion import complete_event_bookings, complete_table_bookings
from guest_engagement.services.dispatcher import FatalSafetySignal
from guest_engagement.services.marketing import process_interest_marketing
from guest_engagement.services.reminders import process_reminders
from guest_engagement.services.reviews import process_event_reviews, process_table_reviews
from guest_engagement.services.run_ledger import acquire_run, make_run_key, resolve_run
from guest_engagement.services.send_guard import evaluate_send_guard
from guest_engagement.services.sms_gateway import SmsGateway, get_sms_gateway

logger = get_logger(__name__)

SEND_GUARD_BLOCKED = "send_guard_blocked"


async def run_guest_engagement(
    db: AsyncSession,
    gateway: SmsGateway,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> EngagementRunReport:
    """Run every engagement stage once for the current run key.

    Raises whatever a stage raised (after recording the run as failed),
    except fatal safety signals, which are reported as an aborted run.
    """
    settings = settings or get_settings()
    engagement = get_config().engagement
    now = now or utc_now()
    run_key = make_run_key(now)
    log = logger.bind(job_name=engagement.job_name, run_key=run_key)

    acquisition = await acquire_run(db, engagement.job_name, run_key, now=now)
    if not acquisition.should_run:
        return EngagementRunReport(
            skipped=True,
            reason=acquisition.skip_reason,
            run_key=run_key,
            processed_at=utc_now(),
        )

    run_id = acquisition.run_id
    report = EngagementRunReport(run_key=run_key, processed_at=now)
    started = time.monotonic()
    log.info("engagement_run_started")

    try:
        report.guard = await evaluate_send_guard(db, settings, now)
        if report.guard.blocked:
            await resolve_run(db, run_id, CronRunStatus.COMPLETED)
            report.skipped = True
            report.reason = SEND_GUARD_BLOCKED
            report.processed_at = utc_now()
            return report

        bookings = await load_event_bookings(db, now)
        table_bookings = await load_table_bookings(db, now)

        stages = [
            ("reminders", lambda: process_reminders(db, gateway, bookings, now, settings)),
            ("reviews", lambda: process_event_reviews(db, gateway, bookings, now, settings)),
            ("completion", lambda: complete_event_bookings(db, now)),
            ("table_reviews", lambda: process_table_reviews(db, gateway, table_bookings, now, settings)),
            ("table_completion", lambda: complete_table_bookings(db, now)),
            ("marketing", lambda: process_interest_marketing(db, gateway, now, settings)),
        ]
        for name, stage in stages:
            if time.monotonic() - started > engagement.max_run_duration_seconds:
                log.bind(stage=name).warning("engagement_run_deadline_reached")
                report.deadline_reached = True
                break
            setattr(report, name, await stage())

    except FatalSafetySignal as signal:
        await db.rollback()
        abort = signal.to_abort()
        log.bind(code=signal.code, stage=signal.stage).error("engagement_run_aborted")
        await resolve_run(db, run_id, CronRunStatus.FAILED, signal.code)
        await alert_operator(
            "Event guest engagement aborted",
            f"Fatal SMS safety signal: {signal.code}",
            {"run_key": run_key, **abort.model_dump(exclude_none=True)},
        )
        report.aborted = True
        report.abort_reason = signal.code
        report.abort_stage = signal.stage
        report.abort_booking_id = signal.booking_id
        report.abort_customer_id = signal.customer_id
        report.abort_event_id = signal.event_id
        report.abort_template_key = signal.template_key
        report.safety_aborts = [abort]
        report.processed_at = utc_now()
        return report

    except Exception as e:
        log.bind(error=str(e)).error("engagement_run_failed")
        await db.rollback()
        await resolve_run(db, run_id, CronRunStatus.FAILED, str(e))
        await alert_operator(
            "Event guest engagement failed",
            str(e),
            {"run_key": run_key, "error_type": type(e).__name__},
        )
        raise

    await resolve_run(db, run_id, CronRunStatus.COMPLETED)
    report.processed_at = utc_now()
    log.bind(duration_seconds=round(time.monotonic() - started, 2)).info("engagement_run_completed")
    return report


async def main() -> EngagementRunReport:
    """Run the engagement job once with the configured gateway."""
    setup_logging()
    async with AsyncSessionLocal() as db:
        return await run_guest_engagement(db, get_sms_gateway(db))


if __name__ == "__main__":
    asyncio.run(main())

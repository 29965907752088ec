"""Tests for the cron run ledger."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.models.job_run import CronJobRun, CronRunStatus
from guest_engagement.services import run_ledger
from guest_engagement.services.run_ledger import (
    MAX_ERROR_MESSAGE_LENGTH,
    STALE_RUN_MESSAGE,
    SkipReason,
    acquire_run,
    is_run_stale,
    make_run_key,
    resolve_run,
)

pytestmark = pytest.mark.asyncio

JOB = "event-guest-engagement"
NOW = datetime(2025, 3, 9, 19, 2)


async def _runs(db: AsyncSession) -> list[CronJobRun]:
    result = await db.execute(
        select(CronJobRun).order_by(CronJobRun.run_key).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class TestMakeRunKey:
    """Tests for make_run_key."""

    async def test_buckets_to_quarter_hour(self):
        assert make_run_key(NOW) == "2025-03-09T19:00"
        assert make_run_key(NOW + timedelta(minutes=14)) == "2025-03-09T19:15"


class TestIsRunStale:
    """Tests for is_run_stale."""

    async def test_fresh_run(self):
        assert is_run_stale(NOW - timedelta(minutes=19), NOW, stale_minutes=20) is False

    async def test_old_run(self):
        assert is_run_stale(NOW - timedelta(minutes=21), NOW, stale_minutes=20) is True

    async def test_missing_started_at_counts_as_stale(self):
        assert is_run_stale(None, NOW, stale_minutes=20) is True


class TestAcquireRun:
    """Tests for acquire_run."""

    async def test_first_trigger_runs(self, db_session: AsyncSession):
        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        assert acquisition.should_run is True
        assert acquisition.run_id is not None

        runs = await _runs(db_session)
        assert len(runs) == 1
        assert runs[0].status == CronRunStatus.RUNNING
        assert runs[0].started_at == NOW

    async def test_second_trigger_in_same_bucket_is_skipped(self, db_session: AsyncSession):
        """A trigger a minute later sees the fresh running row."""
        await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        second = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW + timedelta(minutes=1))

        assert second.should_run is False
        assert second.skip_reason == SkipReason.ALREADY_RUNNING
        assert len(await _runs(db_session)) == 1

    async def test_fresh_run_in_other_bucket_blocks_overlap(self, db_session: AsyncSession):
        """Runs of the same job never overlap, even across buckets."""
        await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        later = await acquire_run(db_session, JOB, "2025-03-09T19:15", now=NOW + timedelta(minutes=15))

        assert later.should_run is False
        assert later.skip_reason == SkipReason.ALREADY_RUNNING

    async def test_completed_bucket_is_not_rerun(self, db_session: AsyncSession):
        first = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)
        await resolve_run(db_session, first.run_id, CronRunStatus.COMPLETED)

        again = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW + timedelta(minutes=5))

        assert again.should_run is False
        assert again.skip_reason == SkipReason.ALREADY_COMPLETED

    async def test_failed_bucket_is_restarted(self, db_session: AsyncSession):
        first = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)
        await resolve_run(db_session, first.run_id, CronRunStatus.FAILED, "boom")

        retry_at = NOW + timedelta(minutes=5)
        retry = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=retry_at)

        assert retry.should_run is True
        assert retry.run_id == first.run_id
        runs = await _runs(db_session)
        assert len(runs) == 1
        assert runs[0].status == CronRunStatus.RUNNING
        assert runs[0].started_at == retry_at
        assert runs[0].error_message is None
        assert runs[0].finished_at is None

    async def test_stale_run_is_marked_failed_and_new_bucket_runs(self, db_session: AsyncSession, cron_run_factory):
        await cron_run_factory(
            run_key="2025-03-09T18:15",
            status=CronRunStatus.RUNNING,
            started_at=NOW - timedelta(minutes=45),
        )

        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        assert acquisition.should_run is True
        stale, current = await _runs(db_session)
        assert stale.status == CronRunStatus.FAILED
        assert stale.error_message == STALE_RUN_MESSAGE
        assert stale.finished_at == NOW
        assert current.status == CronRunStatus.RUNNING

    async def test_stale_run_in_same_bucket_is_reclaimed(self, db_session: AsyncSession, cron_run_factory):
        crashed = await cron_run_factory(
            run_key="2025-03-09T19:00",
            status=CronRunStatus.RUNNING,
            started_at=NOW - timedelta(minutes=30),
        )

        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        assert acquisition.should_run is True
        assert acquisition.run_id == crashed.id
        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.RUNNING
        assert run.started_at == NOW

    async def test_other_jobs_do_not_block(self, db_session: AsyncSession, cron_run_factory):
        await cron_run_factory(
            job_name="another-job",
            run_key="2025-03-09T19:00",
            status=CronRunStatus.RUNNING,
            started_at=NOW,
        )

        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        assert acquisition.should_run is True


class TestReclaimRace:
    """A reclaimer whose compare-and-swap loses to another trigger."""

    KEY = "2025-03-09T19:00"

    @pytest_asyncio.fixture
    async def failed_run(self, cron_run_factory):
        return await cron_run_factory(
            run_key=self.KEY,
            status=CronRunStatus.FAILED,
            started_at=NOW - timedelta(minutes=30),
        )

    def _rival(self, monkeypatch, rival_action):
        """Make the first restart lose: the rival acts on the row, our update misses."""
        real_restart = run_ledger._restart
        calls = []

        async def restart(db, observed, now):
            calls.append(observed.status)
            if len(calls) == 1:
                await rival_action(db, observed)
                await real_restart(db, observed, now)
                return False
            return await real_restart(db, observed, now)

        monkeypatch.setattr(run_ledger, "_restart", restart)
        return calls

    async def test_rival_restart_wins(self, db_session: AsyncSession, failed_run, monkeypatch):
        async def rival_restarts(db, observed):
            await db.execute(
                update(CronJobRun)
                .where(CronJobRun.id == observed.id)
                .values(status=CronRunStatus.RUNNING, started_at=NOW - timedelta(seconds=1))
            )

        calls = self._rival(monkeypatch, rival_restarts)

        acquisition = await acquire_run(db_session, JOB, self.KEY, now=NOW)

        assert acquisition.should_run is False
        assert acquisition.skip_reason == SkipReason.ALREADY_RUNNING
        assert len(calls) == 1
        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.RUNNING
        assert run.started_at == NOW - timedelta(seconds=1)

    async def test_rival_finished_the_run(self, db_session: AsyncSession, failed_run, monkeypatch):
        async def rival_completes(db, observed):
            await db.execute(
                update(CronJobRun)
                .where(CronJobRun.id == observed.id)
                .values(status=CronRunStatus.COMPLETED, finished_at=NOW)
            )

        self._rival(monkeypatch, rival_completes)

        acquisition = await acquire_run(db_session, JOB, self.KEY, now=NOW)

        assert acquisition.should_run is False
        assert acquisition.skip_reason == SkipReason.ALREADY_COMPLETED

    async def test_row_still_reclaimable_is_recovered(
        self, db_session: AsyncSession, failed_run, monkeypatch
    ):
        async def rival_restarts_and_fails(db, observed):
            await db.execute(
                update(CronJobRun)
                .where(CronJobRun.id == observed.id)
                .values(started_at=NOW - timedelta(minutes=1), error_message="rival failed")
            )

        calls = self._rival(monkeypatch, rival_restarts_and_fails)

        acquisition = await acquire_run(db_session, JOB, self.KEY, now=NOW)

        assert acquisition.should_run is True
        assert acquisition.run_id == failed_run.id
        assert calls == [CronRunStatus.FAILED, CronRunStatus.FAILED]
        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.RUNNING
        assert run.started_at == NOW
        assert run.error_message is None

    async def test_late_reclaimer_does_not_fail_the_winner(
        self, db_session: AsyncSession, cron_run_factory, monkeypatch
    ):
        await cron_run_factory(
            run_key=self.KEY,
            status=CronRunStatus.RUNNING,
            started_at=NOW - timedelta(minutes=30),
        )
        # Both triggers read the stale row; the first one reclaims it
        stale_snapshot = await run_ledger._latest_running(db_session, JOB)
        winner = await acquire_run(db_session, JOB, self.KEY, now=NOW)

        real_latest_running = run_ledger._latest_running
        reads = []

        async def latest_running(db, job_name):
            reads.append(job_name)
            if len(reads) == 1:
                return stale_snapshot
            return await real_latest_running(db, job_name)

        monkeypatch.setattr(run_ledger, "_latest_running", latest_running)

        late = await acquire_run(db_session, JOB, "2025-03-09T19:15", now=NOW + timedelta(seconds=5))

        assert winner.should_run is True
        assert late.should_run is False
        assert late.skip_reason == SkipReason.ALREADY_RUNNING
        (run,) = await _runs(db_session)
        assert run.id == winner.run_id
        assert run.status == CronRunStatus.RUNNING
        assert run.started_at == NOW
        assert run.error_message is None

    async def test_late_reclaimer_in_same_bucket_does_not_share_the_run(
        self, db_session: AsyncSession, cron_run_factory, monkeypatch
    ):
        await cron_run_factory(
            run_key=self.KEY,
            status=CronRunStatus.RUNNING,
            started_at=NOW - timedelta(minutes=30),
        )
        stale_snapshot = await run_ledger._latest_running(db_session, JOB)
        winner = await acquire_run(db_session, JOB, self.KEY, now=NOW)

        async def latest_running(db, job_name):
            return stale_snapshot

        monkeypatch.setattr(run_ledger, "_latest_running", latest_running)

        late = await acquire_run(db_session, JOB, self.KEY, now=NOW + timedelta(seconds=5))

        assert winner.should_run is True
        assert late.should_run is False
        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.RUNNING
        assert run.started_at == NOW


class TestResolveRun:
    """Tests for resolve_run."""

    async def test_records_final_status(self, db_session: AsyncSession):
        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        await resolve_run(db_session, acquisition.run_id, CronRunStatus.COMPLETED, now=NOW + timedelta(minutes=2))

        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.COMPLETED
        assert run.finished_at == NOW + timedelta(minutes=2)
        assert run.error_message is None

    async def test_error_message_is_truncated(self, db_session: AsyncSession):
        acquisition = await acquire_run(db_session, JOB, "2025-03-09T19:00", now=NOW)

        await resolve_run(db_session, acquisition.run_id, CronRunStatus.FAILED, "x" * 2000)

        (run,) = await _runs(db_session)
        assert run.status == CronRunStatus.FAILED
        assert len(run.error_message) == MAX_ERROR_MESSAGE_LENGTH

    async def test_missing_run_id_is_a_no_op(self, db_session: AsyncSession):
        await resolve_run(db_session, None, CronRunStatus.COMPLETED)

        assert await _runs(db_session) == []

"""Tests for the durable job table: dedupe, claiming, retries and recovery."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from expertdesk.models import ScheduledJob
from expertdesk.services import scheduler_service
from expertdesk.services.scheduler_service import (
    RetryLater,
    cancel_jobs,
    job_handler,
    requeue_stale_jobs,
    run_due_jobs,
    schedule_job,
)
from tests.factories.users import NOW

CALLS: list[dict] = []


@job_handler("test_record")
async def _record(db, collab, payload, now):
    CALLS.append(payload)


@job_handler("test_explode")
async def _explode(db, collab, payload, now):
    raise RuntimeError("handler blew up")


@job_handler("test_not_yet")
async def _not_yet(db, collab, payload, now):
    raise RetryLater("dependency missing")


@pytest.fixture(autouse=True)
def reset_calls():
    CALLS.clear()
    yield
    CALLS.clear()


async def _job(session_factory, job_id: int) -> ScheduledJob:
    async with session_factory() as check:
        return (await check.execute(select(ScheduledJob).where(ScheduledJob.id == job_id))).scalar_one()


class TestScheduling:
    @pytest.mark.asyncio
    async def test_dedupe_key_replaces_pending_job(self, db):
        first = await schedule_job(db, "test_record", NOW, {"n": 1}, dedupe_key="k")
        second = await schedule_job(db, "test_record", NOW, {"n": 2}, dedupe_key="k")

        result = await db.execute(
            select(ScheduledJob.id, ScheduledJob.status).order_by(ScheduledJob.id)
        )
        assert [tuple(row) for row in result.all()] == [
            (first.id, "cancelled"),
            (second.id, "pending"),
        ]

    @pytest.mark.asyncio
    async def test_same_key_different_kind_is_independent(self, db):
        await schedule_job(db, "test_record", NOW, {}, dedupe_key="k")
        await schedule_job(db, "test_explode", NOW, {}, dedupe_key="k")

        result = await db.execute(
            select(ScheduledJob).where(ScheduledJob.status == "pending")
        )
        assert len(result.scalars().all()) == 2

    @pytest.mark.asyncio
    async def test_cancel_returns_count(self, db):
        await schedule_job(db, "test_record", NOW, {}, dedupe_key="k")

        assert await cancel_jobs(db, "test_record", "k") == 1
        assert await cancel_jobs(db, "test_record", "k") == 0


class TestRunDueJobs:
    @pytest.mark.asyncio
    async def test_runs_only_due_jobs(self, db, collab, session_factory):
        await schedule_job(db, "test_record", NOW, {"n": 1})
        later = await schedule_job(db, "test_record", NOW + timedelta(hours=1), {"n": 2})
        await db.commit()

        completed = await run_due_jobs(session_factory, collab, now=NOW)

        assert completed == 1
        assert CALLS == [{"n": 1}]
        assert (await _job(session_factory, later.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_completed_job_never_runs_twice(self, db, collab, session_factory):
        job = await schedule_job(db, "test_record", NOW, {"n": 1})
        await db.commit()

        await run_due_jobs(session_factory, collab, now=NOW)
        await run_due_jobs(session_factory, collab, now=NOW + timedelta(minutes=1))

        assert CALLS == [{"n": 1}]
        stored = await _job(session_factory, job.id)
        assert stored.status == "done"
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_failure_is_retried_with_backoff(self, db, collab, session_factory):
        job = await schedule_job(db, "test_explode", NOW, {})
        await db.commit()

        completed = await run_due_jobs(session_factory, collab, now=NOW)

        assert completed == 0
        stored = await _job(session_factory, job.id)
        assert stored.status == "pending"
        assert stored.attempts == 1
        assert stored.last_error == "handler blew up"
        assert stored.run_at.replace(tzinfo=None) == (NOW + timedelta(seconds=60)).replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_retry_later_is_not_an_error(self, db, collab, session_factory):
        job = await schedule_job(db, "test_not_yet", NOW, {})
        await db.commit()

        await run_due_jobs(session_factory, collab, now=NOW)

        stored = await _job(session_factory, job.id)
        assert stored.status == "pending"
        assert stored.last_error == "dependency missing"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db, collab, session_factory, monkeypatch):
        monkeypatch.setattr(scheduler_service, "MAX_ATTEMPTS", 1)
        job = await schedule_job(db, "test_explode", NOW, {})
        await db.commit()

        await run_due_jobs(session_factory, collab, now=NOW)

        assert (await _job(session_factory, job.id)).status == "failed"

    @pytest.mark.asyncio
    async def test_unknown_kind_fails_softly(self, db, collab, session_factory):
        job = await schedule_job(db, "test_no_such_handler", NOW, {})
        await db.commit()

        completed = await run_due_jobs(session_factory, collab, now=NOW)

        assert completed == 0
        stored = await _job(session_factory, job.id)
        assert "no handler" in stored.last_error


class TestStaleJobs:
    @pytest.mark.asyncio
    async def test_running_job_from_dead_worker_is_requeued(self, db):
        db.add(
            ScheduledJob(
                kind="test_record",
                payload={},
                run_at=NOW - timedelta(minutes=20),
                status="running",
                attempts=1,
                updated_at=NOW - timedelta(minutes=10),
            )
        )
        await db.flush()

        assert await requeue_stale_jobs(db, NOW) == 1

        job = (await db.execute(select(ScheduledJob))).scalar_one()
        await db.refresh(job)
        assert job.status == "pending"

    @pytest.mark.asyncio
    async def test_recent_running_job_left_alone(self, db):
        db.add(
            ScheduledJob(
                kind="test_record",
                payload={},
                run_at=NOW,
                status="running",
                updated_at=NOW - timedelta(seconds=30),
            )
        )
        await db.flush()

        assert await requeue_stale_jobs(db, NOW) == 0

"""Durable deferred jobs: acceptance timers, idle policies and ledger retries.

Jobs live in the ``scheduled_jobs`` table indexed on (status, run_at), so
pending timers survive restarts. Any number of processes may run
``scheduler_loop``; each due job is claimed with a conditional
pending -> running update, so exactly one worker executes it. Handlers
re-validate current state before acting: a timer that fires after the
thing it guards already moved on is a logged no-op.
"""

import asyncio
import os
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expertdesk.collaborators import Collaborators
from expertdesk.logging_config import get_logger
from expertdesk.models import JobStatusEnum, ScheduledJob, utcnow

logger = get_logger(__name__)

SCHEDULER_POLL_SECONDS = float(os.getenv("SCHEDULER_POLL_SECONDS", "5"))
SCHEDULER_BATCH_SIZE = int(os.getenv("SCHEDULER_BATCH_SIZE", "50"))
MAX_ATTEMPTS = int(os.getenv("LEDGER_MAX_ATTEMPTS", "10"))
RETRY_BACKOFF_SECONDS = int(os.getenv("LEDGER_RETRY_DELAY_SECONDS", "60"))
STALE_RUNNING_SECONDS = 300

JobHandler = Callable[[AsyncSession, Collaborators, dict[str, Any], datetime], Awaitable[None]]

_HANDLERS: dict[str, JobHandler] = {}


class RetryLater(Exception):
    """Raised by a handler that wants the job retried with backoff."""


def job_handler(kind: str) -> Callable[[JobHandler], JobHandler]:
    """Register the coroutine that executes jobs of ``kind``."""

    def decorator(func: JobHandler) -> JobHandler:
        _HANDLERS[kind] = func
        return func

    return decorator


def load_job_handlers() -> dict[str, JobHandler]:
    """Import the service modules that register handlers."""
    from expertdesk.services import assignment_engine, moderation_queue, reputation_ledger  # noqa: F401

    return _HANDLERS


# ---------------------------------------------------------------------------
# Scheduling API (used inside the caller's transaction)
# ---------------------------------------------------------------------------


async def schedule_job(
    db: AsyncSession,
    kind: str,
    run_at: datetime,
    payload: dict[str, Any],
    dedupe_key: str | None = None,
) -> ScheduledJob:
    """Insert a pending job. A pending job with the same (kind, dedupe_key) is replaced."""
    if dedupe_key is not None:
        await cancel_jobs(db, kind, dedupe_key)
    job = ScheduledJob(
        kind=kind,
        payload=payload,
        run_at=run_at,
        status=JobStatusEnum.pending.value,
        dedupe_key=dedupe_key,
    )
    db.add(job)
    await db.flush()
    logger.debug("job_scheduled", job_id=job.id, kind=kind, run_at=run_at.isoformat())
    return job


async def cancel_jobs(db: AsyncSession, kind: str, dedupe_key: str) -> int:
    """Cancel pending jobs of ``kind`` carrying ``dedupe_key``. Returns the count."""
    result = await db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.kind == kind,
            ScheduledJob.dedupe_key == dedupe_key,
            ScheduledJob.status == JobStatusEnum.pending.value,
        )
        .values(status=JobStatusEnum.cancelled.value, updated_at=utcnow())
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


async def _claim(db: AsyncSession, job_id: int, now: datetime) -> bool:
    result = await db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.id == job_id,
            ScheduledJob.status == JobStatusEnum.pending.value,
        )
        .values(
            status=JobStatusEnum.running.value,
            attempts=ScheduledJob.attempts + 1,
            updated_at=now,
        )
    )
    await db.commit()
    return result.rowcount == 1


async def _record_failure(
    db: AsyncSession, job: ScheduledJob, error: str, now: datetime
) -> None:
    if job.attempts >= MAX_ATTEMPTS:
        values = {"status": JobStatusEnum.failed.value}
        logger.error("job_failed_permanently", job_id=job.id, kind=job.kind, error=error)
    else:
        delay = RETRY_BACKOFF_SECONDS * (2 ** max(job.attempts - 1, 0))
        values = {
            "status": JobStatusEnum.pending.value,
            "run_at": now + timedelta(seconds=delay),
        }
        logger.warning(
            "job_retry_scheduled",
            job_id=job.id,
            kind=job.kind,
            attempt=job.attempts,
            delay_seconds=delay,
            error=error,
        )
    await db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.id == job.id,
            ScheduledJob.status == JobStatusEnum.running.value,
        )
        .values(last_error=error, updated_at=now, **values)
    )
    await db.commit()


async def _execute(
    session_factory: async_sessionmaker[AsyncSession],
    collab: Collaborators,
    job_id: int,
    now: datetime,
) -> bool:
    async with session_factory() as db:
        if not await _claim(db, job_id, now):
            return False
        job = (
            await db.execute(select(ScheduledJob).where(ScheduledJob.id == job_id))
        ).scalar_one()

    handler = load_job_handlers().get(job.kind)
    async with session_factory() as db:
        if handler is None:
            await _record_failure(db, job, f"no handler for kind '{job.kind}'", now)
            return False
        try:
            await handler(db, collab, dict(job.payload or {}), now)
            await db.execute(
                update(ScheduledJob)
                .where(ScheduledJob.id == job_id)
                .values(status=JobStatusEnum.done.value, updated_at=now)
            )
            await db.commit()
        except Exception as exc:
            await db.rollback()
            if not isinstance(exc, RetryLater):
                logger.exception("job_handler_error", job_id=job_id, kind=job.kind)
            await _record_failure(db, job, str(exc) or exc.__class__.__name__, now)
            return False

    logger.info("job_completed", job_id=job_id, kind=job.kind)
    return True


async def requeue_stale_jobs(db: AsyncSession, now: datetime) -> int:
    """Return jobs stuck in ``running`` (worker died mid-run) to ``pending``."""
    cutoff = now - timedelta(seconds=STALE_RUNNING_SECONDS)
    result = await db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.status == JobStatusEnum.running.value,
            ScheduledJob.updated_at < cutoff,
        )
        .values(status=JobStatusEnum.pending.value, updated_at=now)
    )
    await db.commit()
    count = result.rowcount or 0
    if count:
        logger.warning("stale_jobs_requeued", count=count)
    return count


async def run_due_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    collab: Collaborators,
    now: datetime | None = None,
    limit: int = SCHEDULER_BATCH_SIZE,
) -> int:
    """Execute every job due at ``now``. Returns the number completed."""
    now = now or utcnow()
    async with session_factory() as db:
        await requeue_stale_jobs(db, now)
        result = await db.execute(
            select(ScheduledJob.id)
            .where(
                ScheduledJob.status == JobStatusEnum.pending.value,
                ScheduledJob.run_at <= now,
            )
            .order_by(ScheduledJob.run_at, ScheduledJob.id)
            .limit(limit)
        )
        due_ids = list(result.scalars().all())

    completed = 0
    for job_id in due_ids:
        if await _execute(session_factory, collab, job_id, now):
            completed += 1
    return completed


async def scheduler_loop(
    stop_event: asyncio.Event,
    session_factory: async_sessionmaker[AsyncSession],
    collab: Collaborators,
) -> None:
    """Main scheduler loop. Runs until stop_event is set."""
    logger.info("scheduler_started", poll_seconds=SCHEDULER_POLL_SECONDS)

    while not stop_event.is_set():
        try:
            completed = await run_due_jobs(session_factory, collab)
            if completed:
                logger.info("scheduler_cycle_complete", jobs_completed=completed)
        except Exception:
            logger.exception("scheduler_cycle_error")

        # Wait for the interval or until stopped
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=SCHEDULER_POLL_SECONDS)
            break
        except asyncio.TimeoutError:
            pass

    logger.info("scheduler_stopped")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

_scheduler_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


async def start_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    collab: Collaborators,
) -> None:
    """Start the scheduler as a background task."""
    global _scheduler_task, _stop_event
    load_job_handlers()
    _stop_event = asyncio.Event()
    _scheduler_task = asyncio.create_task(
        scheduler_loop(_stop_event, session_factory, collab)
    )


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global _scheduler_task, _stop_event
    if _stop_event is not None:
        _stop_event.set()
    if _scheduler_task is not None:
        _scheduler_task.cancel()
        try:
            await _scheduler_task
        except asyncio.CancelledError:
            pass
    _scheduler_task = None
    _stop_event = None

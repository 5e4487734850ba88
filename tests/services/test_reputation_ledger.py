"""Tests for the reputation ledger: append-only history, idempotency and deferral."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from expertdesk.exceptions import UnknownUserError, ValidationError
from expertdesk.models import ReputationHistory, ScheduledJob
from expertdesk.services import reputation_ledger
from expertdesk.services.reputation_ledger import LedgerEntry
from expertdesk.services.scheduler_service import run_due_jobs
from tests.factories import set_score
from tests.factories.users import NOW, OWNER, REPORTER_1

GHOST = 404


async def _history_count(db, user_id: int) -> int:
    result = await db.execute(
        select(func.count(ReputationHistory.id)).where(ReputationHistory.user_id == user_id)
    )
    return result.scalar_one()


class TestApply:
    @pytest.mark.asyncio
    async def test_first_entry_starts_from_baseline(self, db, directory):
        entry = LedgerEntry(REPORTER_1, "helpful_flag_confirmed", "report:1:reporter:20")

        score = await reputation_ledger.apply(db, directory, entry, now=NOW)

        assert score == 105
        rows = await reputation_ledger.history(db, REPORTER_1)
        assert len(rows) == 1
        assert rows[0].delta == 5
        assert rows[0].score_after == 105
        assert rows[0].idempotency_key == "report:1:reporter:20:helpful_flag_confirmed"

    @pytest.mark.asyncio
    async def test_replayed_entry_is_applied_once(self, db, directory):
        entry = LedgerEntry(OWNER, "content_removed", "report:1")

        await reputation_ledger.apply(db, directory, entry, now=NOW)
        score = await reputation_ledger.apply(db, directory, entry, now=NOW)

        assert score == 85
        assert await _history_count(db, OWNER) == 1

    @pytest.mark.asyncio
    async def test_same_event_different_reason_both_apply(self, db, directory):
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "report_received", "report:1:reporter:20"), now=NOW
        )
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "content_removed", "report:1:reporter:20"), now=NOW
        )

        assert await _history_count(db, OWNER) == 2
        assert await reputation_ledger.score_of(db, OWNER) == 85

    @pytest.mark.asyncio
    async def test_unknown_reason_rejected(self, db, directory):
        with pytest.raises(ValidationError):
            await reputation_ledger.apply(
                db, directory, LedgerEntry(OWNER, "bribe_accepted", "x:1"), now=NOW
            )
        assert await _history_count(db, OWNER) == 0

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, db, directory):
        with pytest.raises(UnknownUserError):
            await reputation_ledger.apply(
                db, directory, LedgerEntry(GHOST, "content_removed", "report:1"), now=NOW
            )
        assert await reputation_ledger.get_record(db, GHOST) is None

    @pytest.mark.asyncio
    async def test_soft_cap_quarters_gains(self, db, directory):
        await set_score(db, REPORTER_1, 1000)

        score = await reputation_ledger.apply(
            db, directory, LedgerEntry(REPORTER_1, "helpful_flag_confirmed", "report:2"), now=NOW
        )

        assert score == 1001
        rows = await reputation_ledger.history(db, REPORTER_1)
        assert rows[0].delta == 1

    @pytest.mark.asyncio
    async def test_counters_and_violation_timestamp(self, db, directory):
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "content_removed", "report:1"), now=NOW
        )
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "report_received", "report:2:reporter:20"), now=NOW
        )

        record = await reputation_ledger.get_record(db, OWNER)
        assert record.valid_reports == 1
        assert record.total_reports == 1
        assert record.last_violation_at is not None


class TestReads:
    @pytest.mark.asyncio
    async def test_user_without_record_is_baseline(self, db):
        assert await reputation_ledger.score_of(db, GHOST) == 100
        assert await reputation_ledger.trust_level_of(db, GHOST) == 3

    @pytest.mark.asyncio
    async def test_trust_levels_for_many_users(self, db):
        await set_score(db, OWNER, 20)
        await set_score(db, REPORTER_1, 400)

        levels = await reputation_ledger.trust_levels_of(db, [OWNER, REPORTER_1, GHOST])

        assert levels == {OWNER: 1, REPORTER_1: 5, GHOST: 3}

    @pytest.mark.asyncio
    async def test_replay_matches_cached_score(self, db, directory):
        for reason, source in [
            ("content_removed", "report:1"),
            ("warning_issued", "action:1"),
            ("helpful_flag_confirmed", "report:9:reporter:30"),
        ]:
            await reputation_ledger.apply(db, directory, LedgerEntry(OWNER, reason, source), now=NOW)

        assert await reputation_ledger.score_of(db, OWNER) == 80
        assert await reputation_ledger.replay(db, OWNER) == 80
        assert await reputation_ledger.verify_consistency(db, OWNER) is True

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, db, directory):
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "content_removed", "report:1"), now=NOW
        )
        await reputation_ledger.apply(
            db, directory, LedgerEntry(OWNER, "warning_issued", "action:1"), now=NOW
        )

        rows = await reputation_ledger.history(db, OWNER)

        assert [r.reason for r in rows] == ["warning_issued", "content_removed"]
        assert [r.score_after for r in rows] == [75, 85]


class TestDeferral:
    @pytest.mark.asyncio
    async def test_unknown_user_entry_is_deferred(self, db, collab):
        entry = LedgerEntry(GHOST, "helpful_flag_confirmed", "report:5:reporter:404")

        result = await reputation_ledger.apply_or_defer(db, collab, entry, now=NOW)

        assert result is None
        jobs = (await db.execute(select(ScheduledJob))).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].kind == "reputation_retry"
        assert jobs[0].status == "pending"
        assert jobs[0].payload["source_event_id"] == "report:5:reporter:404"

    @pytest.mark.asyncio
    async def test_deferred_entry_lands_once_user_exists(self, db, collab, directory, session_factory):
        entry = LedgerEntry(GHOST, "helpful_flag_confirmed", "report:5:reporter:404")
        await reputation_ledger.apply_or_defer(db, collab, entry, now=NOW)
        await db.commit()

        directory.add(GHOST)
        completed = await run_due_jobs(session_factory, collab, now=NOW + timedelta(minutes=5))

        assert completed == 1
        assert await reputation_ledger.score_of(db, GHOST) == 105

    @pytest.mark.asyncio
    async def test_still_unknown_user_is_retried_later(self, db, collab, session_factory):
        entry = LedgerEntry(GHOST, "helpful_flag_confirmed", "report:5:reporter:404")
        await reputation_ledger.apply_or_defer(db, collab, entry, now=NOW)
        await db.commit()

        run_at = NOW + timedelta(minutes=5)
        completed = await run_due_jobs(session_factory, collab, now=run_at)

        assert completed == 0
        async with session_factory() as check:
            job = (await check.execute(select(ScheduledJob))).scalar_one()
            assert job.status == "pending"
            assert job.attempts == 1
            assert job.last_error
        assert await reputation_ledger.get_record(db, GHOST) is None

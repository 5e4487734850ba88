"""Reputation ledger: append-only score adjustments and derived trust levels.

Every change is a ``ReputationHistory`` row; the cached ``ReputationRecord.score``
is updated in the same transaction, so it always equals the baseline plus
the sum of history deltas. Deltas come from ``REASON_DELTAS`` only and are
never caller-supplied. Each entry carries an idempotency key derived from
the source event, so at-least-once retries cannot double-apply.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.collaborators import Collaborators, UserDirectory
from expertdesk.database import insert_ignore
from expertdesk.exceptions import UnknownUserError, ValidationError
from expertdesk.logging_config import get_logger
from expertdesk.models import ReputationHistory, ReputationRecord, utcnow
from expertdesk.services.scheduler_service import RetryLater, job_handler, schedule_job

logger = get_logger(__name__)

BASELINE_SCORE = 100
SCORE_SOFT_CAP = 1000
LEDGER_RETRY_DELAY_SECONDS = int(os.getenv("LEDGER_RETRY_DELAY_SECONDS", "60"))

REASON_DELTAS: dict[str, int] = {
    "content_removed": -15,
    "helpful_flag_confirmed": 5,
    "false_report_filed": -5,
    "false_report_first_offense": 0,
    "warning_issued": -10,
    "user_suspended": -100,
    "report_received": 0,
    "question_answered": 2,
}

# Counter bumped on the record alongside the history row
_REASON_COUNTERS: dict[str, str] = {
    "content_removed": "valid_reports",
    "helpful_flag_confirmed": "helpful_flags",
    "false_report_filed": "false_reports",
    "false_report_first_offense": "false_reports",
    "warning_issued": "warnings",
    "user_suspended": "suspensions",
    "report_received": "total_reports",
}

_VIOLATION_REASONS = {"content_removed", "warning_issued", "user_suspended"}

# (exclusive upper bound, level); scores at or above the last bound are level 5
TRUST_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (40, 1),
    (70, 2),
    (150, 3),
    (300, 4),
)


def compute_trust_level(score: int) -> int:
    """Monotonic step function from score to trust level 1..5."""
    for bound, level in TRUST_THRESHOLDS:
        if score < bound:
            return level
    return 5


def effective_delta(score: int, delta: int) -> int:
    """Apply the soft cap: gains above ``SCORE_SOFT_CAP`` are quartered."""
    if delta > 0 and score >= SCORE_SOFT_CAP:
        return delta // 4
    return delta


@dataclass(frozen=True)
class LedgerEntry:
    """One requested adjustment, as produced by the moderation and routing flows."""

    user_id: int
    reason: str
    source_event_id: str
    content_type: str | None = None
    content_id: int | None = None
    moderator_id: int | None = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.source_event_id}:{self.reason}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "reason": self.reason,
            "source_event_id": self.source_event_id,
            "content_type": self.content_type,
            "content_id": self.content_id,
            "moderator_id": self.moderator_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LedgerEntry":
        return cls(
            user_id=int(payload["user_id"]),
            reason=payload["reason"],
            source_event_id=payload["source_event_id"],
            content_type=payload.get("content_type"),
            content_id=payload.get("content_id"),
            moderator_id=payload.get("moderator_id"),
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_record(db: AsyncSession, user_id: int) -> ReputationRecord | None:
    # Counters are bumped with Core UPDATEs, so never trust the identity map here
    result = await db.execute(
        select(ReputationRecord)
        .where(ReputationRecord.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def score_of(db: AsyncSession, user_id: int) -> int:
    """Current score; users without a record sit at the baseline."""
    result = await db.execute(
        select(ReputationRecord.score).where(ReputationRecord.user_id == user_id)
    )
    score = result.scalar_one_or_none()
    return BASELINE_SCORE if score is None else int(score)


async def trust_level_of(db: AsyncSession, user_id: int) -> int:
    return compute_trust_level(await score_of(db, user_id))


async def trust_levels_of(db: AsyncSession, user_ids: list[int]) -> dict[int, int]:
    """Trust levels for many users in one query."""
    if not user_ids:
        return {}
    result = await db.execute(
        select(ReputationRecord.user_id, ReputationRecord.score).where(
            ReputationRecord.user_id.in_(user_ids)
        )
    )
    scores = {row.user_id: int(row.score) for row in result.all()}
    return {
        uid: compute_trust_level(scores.get(uid, BASELINE_SCORE)) for uid in user_ids
    }


async def history(db: AsyncSession, user_id: int, limit: int = 100) -> list[ReputationHistory]:
    result = await db.execute(
        select(ReputationHistory)
        .where(ReputationHistory.user_id == user_id)
        .order_by(ReputationHistory.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def has_source_event(db: AsyncSession, user_id: int, source_event_id: str) -> bool:
    """True if any entry for the user was produced by ``source_event_id``."""
    result = await db.execute(
        select(ReputationHistory.id)
        .where(
            ReputationHistory.user_id == user_id,
            ReputationHistory.source_event_id == source_event_id,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def replay(db: AsyncSession, user_id: int) -> int:
    """Recompute a score from history alone."""
    result = await db.execute(
        select(func.coalesce(func.sum(ReputationHistory.delta), 0)).where(
            ReputationHistory.user_id == user_id
        )
    )
    return BASELINE_SCORE + int(result.scalar_one())


async def verify_consistency(db: AsyncSession, user_id: int) -> bool:
    """True if the cached score equals the replayed history."""
    cached = await score_of(db, user_id)
    replayed = await replay(db, user_id)
    if cached != replayed:
        logger.error(
            "reputation_cache_mismatch",
            user_id=user_id,
            cached=cached,
            replayed=replayed,
        )
    return cached == replayed


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def _ensure_record(db: AsyncSession, user_id: int, now: datetime) -> None:
    await insert_ignore(
        db,
        ReputationRecord,
        user_id=user_id,
        score=BASELINE_SCORE,
        created_at=now,
        updated_at=now,
    )


async def _existing_entry(db: AsyncSession, entry: LedgerEntry) -> ReputationHistory | None:
    result = await db.execute(
        select(ReputationHistory).where(
            ReputationHistory.user_id == entry.user_id,
            ReputationHistory.idempotency_key == entry.idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def apply(
    db: AsyncSession,
    directory: UserDirectory,
    entry: LedgerEntry,
    now: datetime | None = None,
) -> int:
    """Append a ledger entry and return the new score.

    Replaying an entry whose idempotency key is already recorded returns
    the current score without changing anything.

    Raises:
        ValidationError: unknown reason
        UnknownUserError: the directory has no such user
    """
    if entry.reason not in REASON_DELTAS:
        raise ValidationError(f"Unknown reputation reason '{entry.reason}'", field="reason")

    if await _existing_entry(db, entry) is not None:
        logger.info(
            "reputation_entry_duplicate",
            user_id=entry.user_id,
            idempotency_key=entry.idempotency_key,
        )
        return await score_of(db, entry.user_id)

    if await directory.get_user(entry.user_id) is None:
        raise UnknownUserError(entry.user_id)

    now = now or utcnow()
    await _ensure_record(db, entry.user_id, now)

    current = await score_of(db, entry.user_id)
    delta = effective_delta(current, REASON_DELTAS[entry.reason])

    values: dict[str, Any] = {
        "score": ReputationRecord.score + delta,
        "updated_at": now,
    }
    counter = _REASON_COUNTERS.get(entry.reason)
    if counter is not None:
        column = getattr(ReputationRecord, counter)
        values[counter] = column + 1
    if entry.reason in _VIOLATION_REASONS:
        values["last_violation_at"] = now

    # Row lock via the UPDATE itself; score is read back after it lands
    await db.execute(
        update(ReputationRecord)
        .where(ReputationRecord.user_id == entry.user_id)
        .values(**values)
    )
    new_score = await score_of(db, entry.user_id)

    db.add(
        ReputationHistory(
            user_id=entry.user_id,
            delta=delta,
            reason=entry.reason,
            source_event_id=entry.source_event_id,
            idempotency_key=entry.idempotency_key,
            score_after=new_score,
            content_type=entry.content_type,
            content_id=entry.content_id,
            moderator_id=entry.moderator_id,
            created_at=now,
        )
    )
    await db.flush()

    logger.info(
        "reputation_applied",
        user_id=entry.user_id,
        reason=entry.reason,
        delta=delta,
        new_score=new_score,
    )
    return new_score


async def apply_or_defer(
    db: AsyncSession,
    collab: Collaborators,
    entry: LedgerEntry,
    now: datetime | None = None,
) -> int | None:
    """Apply an entry, or persist a retry job if the user is not in the directory yet.

    Returns the new score, or None when the entry was deferred.
    """
    now = now or utcnow()
    try:
        return await apply(db, collab.directory, entry, now=now)
    except UnknownUserError:
        await schedule_job(
            db,
            "reputation_retry",
            now + timedelta(seconds=LEDGER_RETRY_DELAY_SECONDS),
            entry.to_payload(),
            dedupe_key=f"{entry.user_id}:{entry.idempotency_key}",
        )
        logger.warning(
            "reputation_entry_deferred",
            user_id=entry.user_id,
            reason=entry.reason,
            source_event_id=entry.source_event_id,
        )
        return None


@job_handler("reputation_retry")
async def _retry_entry(
    db: AsyncSession,
    collab: Collaborators,
    payload: dict[str, Any],
    now: datetime,
) -> None:
    entry = LedgerEntry.from_payload(payload)
    try:
        await apply(db, collab.directory, entry, now=now)
    except UnknownUserError as exc:
        raise RetryLater(exc.message) from exc

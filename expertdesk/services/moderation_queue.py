"""Moderation queue: report intake, priority ordering, claims and resolution.

Reports against the same content merge while open: each distinct reporter
adds a corroboration row and raises the priority. Priority is

    severity(reason) * sum(reporter weight) * (1 + 1 / owner trust)

so content from low-trust owners surfaces first, and low-trust reporters
are down-weighted but never discarded. Claims are a single conditional
UPDATE, which makes each pending report claimable by exactly one moderator.
Resolution writes the outcome back to the reputation ledger.
"""

import os
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.collaborators import Collaborators, UserInfo
from expertdesk.database import insert_ignore
from expertdesk.exceptions import (
    ConflictError,
    ContentNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    SuspendedUserError,
    UnknownUserError,
    ValidationError,
)
from expertdesk.logging_config import get_logger
from expertdesk.models import (
    OPEN_REPORT_STATUSES,
    ContentReport,
    ModerationAction,
    Question,
    QuestionMessage,
    ReportCorroboration,
    ReportStatusEnum,
    UserSuspension,
    utcnow,
)
from expertdesk.redis import get_redis_or_none
from expertdesk.services.notification_service import publish_event, send_notification
from expertdesk.services.reputation_ledger import (
    LedgerEntry,
    apply_or_defer,
    get_record,
    has_source_event,
    trust_level_of,
)
from expertdesk.services.scheduler_service import cancel_jobs, job_handler, schedule_job

logger = get_logger(__name__)

REVIEW_CLAIM_TIMEOUT_MINUTES = int(os.getenv("REVIEW_CLAIM_TIMEOUT_MINUTES", "60"))
CLAIM_ATTEMPTS = 5

REASON_SEVERITY: dict[str, int] = {
    "hate_speech": 5,
    "violence": 5,
    "harassment": 4,
    "sexual_content": 4,
    "misinformation": 3,
    "false_info": 3,
    "inappropriate": 3,
    "spam": 2,
    "profanity": 1,
    "other": 1,
}

REPORTER_WEIGHT: dict[int, float] = {1: 0.4, 2: 0.6, 3: 0.8, 4: 1.0, 5: 1.0}

# Owner trust level -> priority at which pending content is hidden
SUPPRESSION_THRESHOLD: dict[int, float] = {1: 6, 2: 9, 3: 12, 4: 16, 5: 20}

DECISIONS = (ReportStatusEnum.resolved.value, ReportStatusEnum.dismissed.value)

LOCAL_CONTENT_TYPES = ("question", "question_message", "user")


def compute_priority(reason: str, reporter_trusts: list[int], owner_trust: int) -> float:
    weight = sum(REPORTER_WEIGHT[level] for level in reporter_trusts)
    return round(REASON_SEVERITY[reason] * weight * (1 + 1 / owner_trust), 4)


def _claim_key(report_id: int) -> str:
    return f"report:{report_id}"


async def _require_admin(collab: Collaborators, user_id: int) -> UserInfo:
    user = await collab.directory.get_user(user_id)
    if user is None or not user.is_admin:
        raise PermissionDeniedError("Moderator access required")
    return user


# ---------------------------------------------------------------------------
# Suspensions
# ---------------------------------------------------------------------------


async def active_suspension(
    db: AsyncSession, user_id: int, now: datetime | None = None
) -> UserSuspension | None:
    now = now or utcnow()
    result = await db.execute(
        select(UserSuspension)
        .where(
            UserSuspension.user_id == user_id,
            UserSuspension.lifted_at.is_(None),
            (UserSuspension.expires_at.is_(None)) | (UserSuspension.expires_at > now),
        )
        .order_by(UserSuspension.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def is_suspended(db: AsyncSession, user_id: int, now: datetime | None = None) -> bool:
    return await active_suspension(db, user_id, now) is not None


async def ensure_not_suspended(db: AsyncSession, user_id: int, now: datetime | None = None) -> None:
    if await is_suspended(db, user_id, now):
        raise SuspendedUserError(user_id)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


async def resolve_owner(
    db: AsyncSession, collab: Collaborators, content_type: str, content_id: int
) -> int:
    """Owner of the reported content.

    Questions and thread messages live here; users are looked up in the
    directory; everything else belongs to the external content store.
    """
    owner_id: int | None = None
    if content_type == "question":
        result = await db.execute(select(Question.asker_id).where(Question.id == content_id))
        owner_id = result.scalar_one_or_none()
    elif content_type == "question_message":
        result = await db.execute(
            select(QuestionMessage.sender_id).where(QuestionMessage.id == content_id)
        )
        owner_id = result.scalar_one_or_none()
    elif content_type == "user":
        if await collab.directory.get_user(content_id) is not None:
            owner_id = content_id
    elif await collab.content_store.exists(content_type, content_id):
        owner_id = await collab.content_store.owner_of(content_type, content_id)

    if owner_id is None:
        raise ContentNotFoundError(content_type, content_id)
    return owner_id


async def _open_report_for(
    db: AsyncSession, content_type: str, content_id: int
) -> ContentReport | None:
    result = await db.execute(
        select(ContentReport)
        .where(
            ContentReport.content_type == content_type,
            ContentReport.content_id == content_id,
            ContentReport.status.in_(OPEN_REPORT_STATUSES),
        )
        .order_by(ContentReport.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _refresh_priority(db: AsyncSession, report: ContentReport, now: datetime) -> None:
    result = await db.execute(
        select(ReportCorroboration.reporter_trust).where(
            ReportCorroboration.report_id == report.id
        )
    )
    trusts = list(result.scalars().all())
    owner_trust = await trust_level_of(db, report.owner_id)

    report.priority = compute_priority(report.reason, trusts, owner_trust)
    if (
        report.status == ReportStatusEnum.pending.value
        and report.priority >= SUPPRESSION_THRESHOLD[owner_trust]
        and not report.auto_suppressed
    ):
        report.auto_suppressed = True
        logger.info(
            "content_auto_suppressed",
            report_id=report.id,
            content_type=report.content_type,
            content_id=report.content_id,
        )
    report.updated_at = now
    await db.flush()


async def file_report(
    db: AsyncSession,
    collab: Collaborators,
    reporter_id: int,
    content_type: str,
    content_id: int,
    reason: str,
    description: str | None = None,
    now: datetime | None = None,
) -> ContentReport:
    """File or corroborate a report.

    Every filing bumps the corroboration count, but priority weighs each
    distinct reporter once, so refiling cannot escalate a report.
    """
    now = now or utcnow()
    if reason not in REASON_SEVERITY:
        raise ValidationError(f"Unknown report reason '{reason}'", field="reason")
    if not content_type:
        raise ValidationError("content_type is required", field="content_type")
    if await collab.directory.get_user(reporter_id) is None:
        raise UnknownUserError(reporter_id)
    await ensure_not_suspended(db, reporter_id, now)

    owner_id = await resolve_owner(db, collab, content_type, content_id)
    if owner_id == reporter_id:
        raise ValidationError("You cannot report your own content", field="content_id")

    reporter_trust = await trust_level_of(db, reporter_id)
    report = await _open_report_for(db, content_type, content_id)
    if report is None:
        report = ContentReport(
            reporter_id=reporter_id,
            content_type=content_type,
            content_id=content_id,
            owner_id=owner_id,
            reason=reason,
            description=description,
            status=ReportStatusEnum.pending.value,
            corroboration_count=1,
            created_at=now,
            updated_at=now,
        )
        db.add(report)
        await db.flush()
        logger.info(
            "report_filed",
            report_id=report.id,
            reporter_id=reporter_id,
            content_type=content_type,
            content_id=content_id,
            reason=reason,
        )
    else:
        await db.execute(
            update(ContentReport)
            .where(ContentReport.id == report.id)
            .values(corroboration_count=ContentReport.corroboration_count + 1)
        )
        await db.refresh(report)

    added = await insert_ignore(
        db,
        ReportCorroboration,
        report_id=report.id,
        reporter_id=reporter_id,
        reporter_trust=reporter_trust,
        created_at=now,
    )
    if not added:
        logger.info(
            "report_refiled",
            report_id=report.id,
            reporter_id=reporter_id,
            corroboration_count=report.corroboration_count,
        )
        return report

    await _refresh_priority(db, report, now)
    if report.corroboration_count > 1:
        logger.info(
            "report_corroborated",
            report_id=report.id,
            reporter_id=reporter_id,
            corroboration_count=report.corroboration_count,
        )

    await apply_or_defer(
        db,
        collab,
        LedgerEntry(
            user_id=owner_id,
            reason="report_received",
            source_event_id=f"report:{report.id}:reporter:{reporter_id}",
            content_type=content_type,
            content_id=content_id,
        ),
        now=now,
    )
    return report


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


async def get_report(db: AsyncSession, report_id: int) -> ContentReport:
    result = await db.execute(
        select(ContentReport)
        .where(ContentReport.id == report_id)
        .execution_options(populate_existing=True)
    )
    report = result.scalar_one_or_none()
    if report is None:
        raise NotFoundError("Report", report_id)
    return report


async def list_reports(
    db: AsyncSession, status: str | None = None, limit: int = 50
) -> list[ContentReport]:
    query = select(ContentReport)
    if status is not None:
        if status not in {s.value for s in ReportStatusEnum}:
            raise ValidationError(f"Unknown report status '{status}'", field="status")
        query = query.where(ContentReport.status == status)
    result = await db.execute(
        query.order_by(
            ContentReport.priority.desc(), ContentReport.created_at, ContentReport.id
        ).limit(limit)
    )
    return list(result.scalars().all())


async def claim_next_report(
    db: AsyncSession,
    collab: Collaborators,
    moderator_id: int,
    now: datetime | None = None,
) -> ContentReport | None:
    """Claim the highest-priority pending report, or None if the queue is empty."""
    now = now or utcnow()
    await _require_admin(collab, moderator_id)

    top_pending = (
        select(ContentReport.id)
        .where(ContentReport.status == ReportStatusEnum.pending.value)
        .order_by(
            ContentReport.priority.desc(), ContentReport.created_at, ContentReport.id
        )
        .limit(1)
        .scalar_subquery()
    )

    for attempt in range(CLAIM_ATTEMPTS):
        result = await db.execute(
            update(ContentReport)
            .where(
                ContentReport.id == top_pending,
                ContentReport.status == ReportStatusEnum.pending.value,
            )
            .values(
                status=ReportStatusEnum.reviewing.value,
                moderator_id=moderator_id,
                claimed_at=now,
                updated_at=now,
            )
            .returning(ContentReport.id)
            .execution_options(synchronize_session=False)
        )
        report_id = result.scalar_one_or_none()
        if report_id is not None:
            break

        remaining = await db.execute(
            select(func.count(ContentReport.id)).where(
                ContentReport.status == ReportStatusEnum.pending.value
            )
        )
        if remaining.scalar_one() == 0:
            return None
        logger.info("report_claim_conflict", moderator_id=moderator_id, attempt=attempt)
    else:
        return None

    await schedule_job(
        db,
        "review_claim_timeout",
        now + timedelta(minutes=REVIEW_CLAIM_TIMEOUT_MINUTES),
        {"report_id": report_id, "moderator_id": moderator_id},
        dedupe_key=_claim_key(report_id),
    )
    report = await get_report(db, report_id)
    await db.refresh(report)
    logger.info("report_claimed", report_id=report_id, moderator_id=moderator_id)
    return report


async def release_claim(
    db: AsyncSession, report_id: int, moderator_id: int, now: datetime | None = None
) -> bool:
    """Return a claimed report to the queue. False if the claim already moved on."""
    now = now or utcnow()
    result = await db.execute(
        update(ContentReport)
        .where(
            ContentReport.id == report_id,
            ContentReport.status == ReportStatusEnum.reviewing.value,
            ContentReport.moderator_id == moderator_id,
        )
        .values(
            status=ReportStatusEnum.pending.value,
            moderator_id=None,
            claimed_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount == 1
    if released:
        await cancel_jobs(db, "review_claim_timeout", _claim_key(report_id))
        logger.info("report_claim_released", report_id=report_id, moderator_id=moderator_id)
    return released


async def _reporters_of(db: AsyncSession, report_id: int) -> list[int]:
    result = await db.execute(
        select(ReportCorroboration.reporter_id)
        .where(ReportCorroboration.report_id == report_id)
        .order_by(ReportCorroboration.id)
    )
    return list(result.scalars().all())


async def _penalize_false_report(
    db: AsyncSession,
    collab: Collaborators,
    report: ContentReport,
    reporter_id: int,
    moderator_id: int,
    now: datetime,
) -> None:
    # The reason depends on prior dismissals, so a retry must not re-pick it
    source = f"report:{report.id}:reporter:{reporter_id}:dismissed"
    if await has_source_event(db, reporter_id, source):
        return
    record = await get_record(db, reporter_id)
    prior_false = record.false_reports if record is not None else 0
    reason = "false_report_first_offense" if prior_false == 0 else "false_report_filed"
    await apply_or_defer(
        db,
        collab,
        LedgerEntry(
            user_id=reporter_id,
            reason=reason,
            source_event_id=source,
            content_type=report.content_type,
            content_id=report.content_id,
            moderator_id=moderator_id,
        ),
        now=now,
    )


async def resolve_report(
    db: AsyncSession,
    collab: Collaborators,
    report_id: int,
    moderator_id: int,
    decision: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ContentReport:
    """Close a claimed report as ``resolved`` (content removed) or ``dismissed``."""
    now = now or utcnow()
    if decision not in DECISIONS:
        raise ValidationError(f"Unknown decision '{decision}'", field="decision")
    await _require_admin(collab, moderator_id)

    report = await get_report(db, report_id)
    if report.status == decision:
        return report
    if report.status != ReportStatusEnum.reviewing.value:
        raise ConflictError(f"Report {report_id} is {report.status}, not under review")
    if report.moderator_id != moderator_id:
        raise PermissionDeniedError("Report is claimed by another moderator")

    values = {"resolved_at": now, "moderator_notes": notes}
    if decision == ReportStatusEnum.dismissed.value:
        values["auto_suppressed"] = False
    result = await db.execute(
        update(ContentReport)
        .where(
            ContentReport.id == report_id,
            ContentReport.status == ReportStatusEnum.reviewing.value,
            ContentReport.moderator_id == moderator_id,
        )
        .values(status=decision, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Report {report_id} changed state during review")
    await cancel_jobs(db, "review_claim_timeout", _claim_key(report_id))
    await db.refresh(report)

    removed = decision == ReportStatusEnum.resolved.value
    db.add(
        ModerationAction(
            moderator_id=moderator_id,
            target_user_id=report.owner_id,
            action="remove_content" if removed else "dismiss_report",
            report_id=report.id,
            content_type=report.content_type,
            content_id=report.content_id,
            reason=notes,
            created_at=now,
        )
    )
    await db.flush()

    reporters = await _reporters_of(db, report_id)
    if removed:
        await apply_or_defer(
            db,
            collab,
            LedgerEntry(
                user_id=report.owner_id,
                reason="content_removed",
                source_event_id=f"report:{report.id}",
                content_type=report.content_type,
                content_id=report.content_id,
                moderator_id=moderator_id,
            ),
            now=now,
        )
        for reporter_id in reporters:
            await apply_or_defer(
                db,
                collab,
                LedgerEntry(
                    user_id=reporter_id,
                    reason="helpful_flag_confirmed",
                    source_event_id=f"report:{report.id}:reporter:{reporter_id}",
                    content_type=report.content_type,
                    content_id=report.content_id,
                    moderator_id=moderator_id,
                ),
                now=now,
            )
    else:
        for reporter_id in reporters:
            await _penalize_false_report(db, collab, report, reporter_id, moderator_id, now)

    logger.info(
        "report_resolved",
        report_id=report_id,
        moderator_id=moderator_id,
        decision=decision,
        reporters=len(reporters),
    )
    if removed:
        await publish_event(
            get_redis_or_none(),
            "content_removed",
            {
                "report_id": report.id,
                "content_type": report.content_type,
                "content_id": report.content_id,
            },
        )
        await send_notification(
            collab.notifier,
            report.owner_id,
            "content_removed",
            {"content_type": report.content_type, "content_id": report.content_id},
        )
    for reporter_id in reporters:
        await send_notification(
            collab.notifier,
            reporter_id,
            "report_closed",
            {"report_id": report.id, "decision": decision},
        )
    return report


async def is_content_suppressed(
    db: AsyncSession, content_type: str, content_id: int
) -> bool:
    result = await db.execute(
        select(ContentReport.id)
        .where(
            ContentReport.content_type == content_type,
            ContentReport.content_id == content_id,
            ContentReport.auto_suppressed.is_(True),
            ContentReport.status.in_(OPEN_REPORT_STATUSES),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def queue_stats(db: AsyncSession) -> dict:
    """Queue depth and top priority as shown to moderators."""
    result = await db.execute(
        select(ContentReport.status, func.count(ContentReport.id))
        .where(ContentReport.status.in_(OPEN_REPORT_STATUSES))
        .group_by(ContentReport.status)
    )
    counts = {row[0]: int(row[1]) for row in result.all()}
    top = await db.execute(
        select(func.max(ContentReport.priority)).where(
            ContentReport.status == ReportStatusEnum.pending.value
        )
    )
    suppressed = await db.execute(
        select(func.count(ContentReport.id)).where(
            ContentReport.auto_suppressed.is_(True),
            ContentReport.status.in_(OPEN_REPORT_STATUSES),
        )
    )
    return {
        "pending": counts.get(ReportStatusEnum.pending.value, 0),
        "reviewing": counts.get(ReportStatusEnum.reviewing.value, 0),
        "top_priority": float(top.scalar_one() or 0),
        "suppressed": int(suppressed.scalar_one()),
    }


# ---------------------------------------------------------------------------
# Moderator actions against users
# ---------------------------------------------------------------------------


async def warn_user(
    db: AsyncSession,
    collab: Collaborators,
    moderator_id: int,
    user_id: int,
    reason: str,
    report_id: int | None = None,
    now: datetime | None = None,
) -> ModerationAction:
    now = now or utcnow()
    await _require_admin(collab, moderator_id)
    if await collab.directory.get_user(user_id) is None:
        raise UnknownUserError(user_id)
    if not (reason or "").strip():
        raise ValidationError("A reason is required", field="reason")

    action = ModerationAction(
        moderator_id=moderator_id,
        target_user_id=user_id,
        action="warn",
        report_id=report_id,
        reason=reason.strip(),
        created_at=now,
    )
    db.add(action)
    await db.flush()
    await apply_or_defer(
        db,
        collab,
        LedgerEntry(
            user_id=user_id,
            reason="warning_issued",
            source_event_id=f"action:{action.id}",
            moderator_id=moderator_id,
        ),
        now=now,
    )
    logger.info("user_warned", user_id=user_id, moderator_id=moderator_id, action_id=action.id)
    await send_notification(collab.notifier, user_id, "warning_issued", {"reason": action.reason})
    return action


async def suspend_user(
    db: AsyncSession,
    collab: Collaborators,
    moderator_id: int,
    user_id: int,
    reason: str,
    duration_days: int | None = None,
    report_id: int | None = None,
    now: datetime | None = None,
) -> UserSuspension:
    """Suspend a user; ``duration_days=None`` means permanent."""
    now = now or utcnow()
    await _require_admin(collab, moderator_id)
    if await collab.directory.get_user(user_id) is None:
        raise UnknownUserError(user_id)
    if not (reason or "").strip():
        raise ValidationError("A reason is required", field="reason")
    if duration_days is not None and duration_days <= 0:
        raise ValidationError("duration_days must be positive", field="duration_days")

    expires_at = now + timedelta(days=duration_days) if duration_days else None
    suspension = UserSuspension(
        user_id=user_id,
        admin_id=moderator_id,
        reason=reason.strip(),
        expires_at=expires_at,
        created_at=now,
    )
    db.add(suspension)
    db.add(
        ModerationAction(
            moderator_id=moderator_id,
            target_user_id=user_id,
            action="suspend",
            report_id=report_id,
            reason=reason.strip(),
            created_at=now,
        )
    )
    await db.flush()
    await apply_or_defer(
        db,
        collab,
        LedgerEntry(
            user_id=user_id,
            reason="user_suspended",
            source_event_id=f"suspension:{suspension.id}",
            moderator_id=moderator_id,
        ),
        now=now,
    )
    logger.info(
        "user_suspended",
        user_id=user_id,
        moderator_id=moderator_id,
        suspension_id=suspension.id,
        expires_at=expires_at.isoformat() if expires_at else None,
    )
    await send_notification(
        collab.notifier,
        user_id,
        "account_suspended",
        {"expires_at": expires_at.isoformat() if expires_at else None},
    )
    return suspension


async def lift_suspension(
    db: AsyncSession,
    collab: Collaborators,
    moderator_id: int,
    suspension_id: int,
    now: datetime | None = None,
) -> UserSuspension:
    now = now or utcnow()
    await _require_admin(collab, moderator_id)
    result = await db.execute(select(UserSuspension).where(UserSuspension.id == suspension_id))
    suspension = result.scalar_one_or_none()
    if suspension is None:
        raise NotFoundError("Suspension", suspension_id)
    if suspension.lifted_at is None:
        suspension.lifted_at = now
        await db.flush()
        logger.info("suspension_lifted", suspension_id=suspension_id, moderator_id=moderator_id)
    return suspension


# ---------------------------------------------------------------------------
# Scheduled job handlers
# ---------------------------------------------------------------------------


@job_handler("review_claim_timeout")
async def _handle_claim_timeout(db, collab, payload, now) -> None:
    report_id = int(payload["report_id"])
    if not await release_claim(db, report_id, int(payload["moderator_id"]), now=now):
        logger.info("report_claim_timeout_stale", report_id=report_id)
        return
    logger.warning("report_claim_timed_out", report_id=report_id)

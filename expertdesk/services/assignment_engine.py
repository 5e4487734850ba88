"""Assignment engine: routes questions to experts and drives their lifecycle.

Question states: new -> routed -> answered -> closed, with routed -> new as
an internal requeue step when the active assignment is declined or expires.
Every status change on a question or an assignment is a conditional UPDATE
on the expected current status; a zero rowcount means another transition
(a racing decline, accept or timer) landed first.

At most one assignment per question is active (assigned or accepted). The
engine guarantees it by only offering a question after winning the
transition into ``routed``.
"""

import os
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.collaborators import Collaborators
from expertdesk.exceptions import (
    ConflictError,
    NoEligibleExpertError,
    NotFoundError,
    PermissionDeniedError,
    UnknownUserError,
    ValidationError,
)
from expertdesk.logging_config import get_logger
from expertdesk.models import (
    ACTIVE_ASSIGNMENT_STATUSES,
    Assignment,
    AssignmentStatusEnum,
    Question,
    QuestionStatusEnum,
    TriageEntry,
    as_utc,
    utcnow,
)
from expertdesk.redis import get_redis_or_none
from expertdesk.services import expertise_index
from expertdesk.services.moderation_queue import ensure_not_suspended
from expertdesk.services.notification_service import publish_event, send_notification
from expertdesk.services.reputation_ledger import LedgerEntry, apply_or_defer
from expertdesk.services.scheduler_service import cancel_jobs, job_handler, schedule_job
from expertdesk.services.taxonomy_service import resolve_target

logger = get_logger(__name__)

ACCEPTANCE_TIMEOUT_HOURS = int(os.getenv("ACCEPTANCE_TIMEOUT_HOURS", "48"))
ANSWERED_IDLE_CLOSE_DAYS = int(os.getenv("ANSWERED_IDLE_CLOSE_DAYS", "14"))
UNENGAGED_IDLE_CLOSE_DAYS = int(os.getenv("UNENGAGED_IDLE_CLOSE_DAYS", "30"))
MAX_QUESTION_LENGTH = 5000

# Question state machine
VALID_TRANSITIONS: dict[str, list[str]] = {
    "new": ["routed", "closed"],
    "routed": ["new", "answered", "closed"],
    "answered": ["closed"],
    "closed": [],
}

# Per decision: target status, allowed sources, and statuses where the
# decision has already taken effect (an expiry counts as a decline)
_DECISIONS: dict[str, tuple[str, tuple[str, ...], tuple[str, ...]]] = {
    "accept": (
        AssignmentStatusEnum.accepted.value,
        (AssignmentStatusEnum.assigned.value,),
        (AssignmentStatusEnum.accepted.value,),
    ),
    "decline": (
        AssignmentStatusEnum.declined.value,
        ACTIVE_ASSIGNMENT_STATUSES,
        (AssignmentStatusEnum.declined.value, AssignmentStatusEnum.expired.value),
    ),
}

TRIAGE_NO_ELIGIBLE = "no_eligible_expert"
TRIAGE_EXHAUSTED = "candidates_exhausted"


def can_transition(current: str, target: str) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def _expiry_key(assignment_id: int) -> str:
    return f"assignment:{assignment_id}"


def _idle_key(question_id: int) -> str:
    return f"question:{question_id}"


# ---------------------------------------------------------------------------
# Conditional transitions
# ---------------------------------------------------------------------------


async def _transition_question(
    db: AsyncSession,
    question_id: int,
    expected: str,
    target: str,
    now: datetime,
    **values,
) -> bool:
    if not can_transition(expected, target):
        raise ValidationError(f"Invalid transition: {expected} -> {target}", field="status")
    result = await db.execute(
        update(Question)
        .where(Question.id == question_id, Question.status == expected)
        .values(status=target, updated_at=now, **values)
    )
    won = result.rowcount == 1
    if won:
        logger.info("question_transition", question_id=question_id, old=expected, new=target)
    return won


async def _transition_assignment(
    db: AsyncSession,
    assignment_id: int,
    expected: str,
    target: str,
    now: datetime,
    **values,
) -> bool:
    result = await db.execute(
        update(Assignment)
        .where(Assignment.id == assignment_id, Assignment.status == expected)
        .values(status=target, updated_at=now, **values)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_question(db: AsyncSession, question_id: int) -> Question:
    result = await db.execute(
        select(Question)
        .where(Question.id == question_id)
        .execution_options(populate_existing=True)
    )
    question = result.scalar_one_or_none()
    if question is None:
        raise NotFoundError("Question", question_id)
    return question


async def get_assignment(db: AsyncSession, assignment_id: int) -> Assignment:
    result = await db.execute(
        select(Assignment)
        .where(Assignment.id == assignment_id)
        .execution_options(populate_existing=True)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment", assignment_id)
    return assignment


async def active_assignment(db: AsyncSession, question_id: int) -> Assignment | None:
    result = await db.execute(
        select(Assignment)
        .where(
            Assignment.question_id == question_id,
            Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def tried_expert_ids(db: AsyncSession, question_id: int) -> set[int]:
    result = await db.execute(
        select(Assignment.assigned_to_id).where(Assignment.question_id == question_id)
    )
    return set(result.scalars().all())


async def list_my_questions(db: AsyncSession, asker_id: int) -> list[Question]:
    result = await db.execute(
        select(Question)
        .where(Question.asker_id == asker_id)
        .order_by(Question.created_at.desc(), Question.id.desc())
    )
    return list(result.scalars().all())


async def list_inbox(
    db: AsyncSession, expert_id: int, status: str | None = None
) -> list[Assignment]:
    """An expert's offers and engagements, newest first."""
    query = select(Assignment).where(Assignment.assigned_to_id == expert_id)
    if status is not None:
        if status not in {s.value for s in AssignmentStatusEnum}:
            raise ValidationError(f"Unknown assignment status '{status}'", field="status")
        query = query.where(Assignment.status == status)
    result = await db.execute(query.order_by(Assignment.created_at.desc(), Assignment.id.desc()))
    return list(result.scalars().all())


async def list_triage(db: AsyncSession, include_resolved: bool = False) -> list[TriageEntry]:
    query = select(TriageEntry)
    if not include_resolved:
        query = query.where(TriageEntry.resolved_at.is_(None))
    result = await db.execute(query.order_by(TriageEntry.created_at, TriageEntry.id))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Routing internals
# ---------------------------------------------------------------------------


async def _next_candidate(
    db: AsyncSession, collab: Collaborators, question: Question
) -> int:
    """Best-ranked expert not yet tried for this question.

    Raises:
        NoEligibleExpertError: nobody qualifies, or every qualifying expert
            has already been offered the question
    """
    ranked = await expertise_index.candidates(
        db, collab.directory, question.area_id, question.tag_id
    )
    ranked = [uid for uid in ranked if uid != question.asker_id]
    if not ranked:
        raise NoEligibleExpertError(question.id, TRIAGE_NO_ELIGIBLE)
    tried = await tried_expert_ids(db, question.id)
    for user_id in ranked:
        if user_id not in tried:
            return user_id
    raise NoEligibleExpertError(question.id, TRIAGE_EXHAUSTED)


async def _offer(
    db: AsyncSession,
    collab: Collaborators,
    question: Question,
    expert_id: int,
    now: datetime,
    assigned_by_id: int | None = None,
) -> Assignment:
    """Create the active assignment. Caller must already hold the routed transition."""
    expires_at = now + timedelta(hours=ACCEPTANCE_TIMEOUT_HOURS)
    assignment = Assignment(
        question_id=question.id,
        assigned_to_id=expert_id,
        assigned_by_id=assigned_by_id,
        status=AssignmentStatusEnum.assigned.value,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    db.add(assignment)
    await db.flush()

    await expertise_index.increment_load(db, expert_id)
    await schedule_job(
        db,
        "assignment_expiry",
        expires_at,
        {"assignment_id": assignment.id},
        dedupe_key=_expiry_key(assignment.id),
    )

    logger.info(
        "assignment_offered",
        question_id=question.id,
        assignment_id=assignment.id,
        expert_id=expert_id,
        assigned_by=assigned_by_id,
        expires_at=expires_at.isoformat(),
    )
    await send_notification(
        collab.notifier,
        expert_id,
        "assignment_offered",
        {
            "assignment_id": assignment.id,
            "question_id": question.id,
            "expires_at": expires_at.isoformat(),
        },
    )
    return assignment


async def _open_triage(
    db: AsyncSession, question: Question, error: NoEligibleExpertError, now: datetime
) -> TriageEntry:
    """Record that a human must route this question, once per open episode."""
    reason = error.error_type
    result = await db.execute(
        select(TriageEntry).where(
            TriageEntry.question_id == question.id,
            TriageEntry.resolved_at.is_(None),
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = TriageEntry(question_id=question.id, reason=reason, created_at=now)
        db.add(entry)
        await db.flush()

    logger.warning(
        "question_needs_triage",
        question_id=question.id,
        reason=reason,
        area_id=question.area_id,
        tag_id=question.tag_id,
    )
    await publish_event(
        get_redis_or_none(),
        "triage_requested",
        {
            "question_id": question.id,
            "triage_id": entry.id,
            "error_type": reason,
            "message": error.message,
        },
    )
    return entry


async def _resolve_triage(
    db: AsyncSession, question_id: int, now: datetime, resolved_by_id: int | None
) -> None:
    await db.execute(
        update(TriageEntry)
        .where(TriageEntry.question_id == question_id, TriageEntry.resolved_at.is_(None))
        .values(resolved_at=now, resolved_by_id=resolved_by_id)
    )


async def _schedule_idle_check(
    db: AsyncSession, question_id: int, now: datetime, days: int
) -> None:
    await schedule_job(
        db,
        "question_idle_check",
        now + timedelta(days=days),
        {"question_id": question_id, "scheduled_at": now.isoformat()},
        dedupe_key=_idle_key(question_id),
    )


async def _requeue(
    db: AsyncSession, collab: Collaborators, question_id: int, now: datetime
) -> Assignment | None:
    """Offer a routed question with no active assignment to the next candidate.

    With no untried candidate left the question stays routed and goes to triage.
    """
    question = await get_question(db, question_id)
    if question.status != QuestionStatusEnum.routed.value:
        return None
    if await active_assignment(db, question_id) is not None:
        return None

    try:
        expert_id = await _next_candidate(db, collab, question)
    except NoEligibleExpertError as exc:
        await _open_triage(db, question, exc, now)
        return None

    if not await _transition_question(db, question_id, "routed", "new", now):
        return None
    if not await _transition_question(db, question_id, "new", "routed", now):
        return None
    await db.refresh(question)
    return await _offer(db, collab, question, expert_id, now)


async def _release_active(
    db: AsyncSession, question_id: int, reason: str, now: datetime
) -> Assignment | None:
    """Decline the active assignment on the system's behalf and free its load slot."""
    assignment = await active_assignment(db, question_id)
    if assignment is None:
        return None
    won = await _transition_assignment(
        db,
        assignment.id,
        assignment.status,
        AssignmentStatusEnum.declined.value,
        now,
        reason=reason,
        responded_at=now,
    )
    if not won:
        raise ConflictError()
    await expertise_index.decrement_load(db, assignment.assigned_to_id)
    await cancel_jobs(db, "assignment_expiry", _expiry_key(assignment.id))
    await db.refresh(assignment)
    logger.info(
        "assignment_released",
        assignment_id=assignment.id,
        question_id=question_id,
        reason=reason,
    )
    return assignment


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


async def submit_question(
    db: AsyncSession,
    collab: Collaborators,
    asker_id: int,
    domain: str,
    area_id: int,
    tag_id: int,
    text: str,
    now: datetime | None = None,
) -> Question:
    """Create a question and offer it to the best-ranked expert.

    When nobody qualifies the question stays ``new`` and a triage entry is
    emitted; the submission itself still succeeds.
    """
    now = now or utcnow()
    body = (text or "").strip()
    if not body:
        raise ValidationError("Question text must not be empty", field="text")
    if len(body) > MAX_QUESTION_LENGTH:
        raise ValidationError(
            f"Question text exceeds {MAX_QUESTION_LENGTH} characters", field="text"
        )
    if await collab.directory.get_user(asker_id) is None:
        raise UnknownUserError(asker_id)
    await ensure_not_suspended(db, asker_id, now)
    await resolve_target(db, domain, area_id, tag_id)

    question = Question(
        asker_id=asker_id,
        domain=domain,
        area_id=area_id,
        tag_id=tag_id,
        question_text=body,
        status=QuestionStatusEnum.new.value,
        last_activity_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(question)
    await db.flush()
    await _schedule_idle_check(db, question.id, now, UNENGAGED_IDLE_CLOSE_DAYS)

    logger.info(
        "question_submitted",
        question_id=question.id,
        asker_id=asker_id,
        area_id=area_id,
        tag_id=tag_id,
    )

    try:
        expert_id = await _next_candidate(db, collab, question)
    except NoEligibleExpertError as exc:
        await _open_triage(db, question, exc, now)
        return question

    if await _transition_question(db, question.id, "new", "routed", now):
        await db.refresh(question)
        await _offer(db, collab, question, expert_id, now)
    return question


async def respond_to_assignment(
    db: AsyncSession,
    collab: Collaborators,
    assignment_id: int,
    expert_id: int,
    decision: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Assignment:
    """Accept or decline an offer.

    Repeating a decision that already landed returns the assignment as is,
    and so does a decline that arrives after the offer expired. A lost race is retried once against the refetched row; a second loss
    raises ConflictError.
    """
    now = now or utcnow()
    if decision not in _DECISIONS:
        raise ValidationError(f"Unknown decision '{decision}'", field="decision")
    target, allowed_from, settled = _DECISIONS[decision]

    assignment = await get_assignment(db, assignment_id)
    if assignment.assigned_to_id != expert_id:
        raise PermissionDeniedError("Only the assigned expert can respond to this offer")

    for attempt in range(2):
        if assignment.status in settled:
            logger.info(
                "assignment_response_repeated",
                assignment_id=assignment_id,
                status=assignment.status,
            )
            return assignment
        if assignment.status not in allowed_from:
            raise ConflictError()

        previous = assignment.status
        values = {"responded_at": now}
        if decision == "accept":
            values["accepted_at"] = now
        else:
            values["reason"] = (reason or "").strip() or None
        if await _transition_assignment(db, assignment_id, previous, target, now, **values):
            break
        logger.info("assignment_cas_conflict", assignment_id=assignment_id, attempt=attempt)
        await db.refresh(assignment)
    else:
        if assignment.status in settled:
            return assignment
        raise ConflictError()

    await cancel_jobs(db, "assignment_expiry", _expiry_key(assignment_id))
    await db.refresh(assignment)
    question = await get_question(db, assignment.question_id)

    logger.info(
        "assignment_responded",
        assignment_id=assignment_id,
        question_id=question.id,
        expert_id=expert_id,
        decision=decision,
    )

    if decision == "accept":
        await send_notification(
            collab.notifier,
            question.asker_id,
            "assignment_accepted",
            {"question_id": question.id, "assignment_id": assignment_id},
        )
        return assignment

    await expertise_index.decrement_load(db, expert_id)
    await _requeue(db, collab, question.id, now)
    return assignment


async def expire_assignment(
    db: AsyncSession,
    collab: Collaborators,
    assignment_id: int,
    now: datetime | None = None,
) -> bool:
    """Acceptance timer fired. Returns False if the offer was already answered."""
    now = now or utcnow()
    result = await db.execute(
        select(Assignment)
        .where(Assignment.id == assignment_id)
        .execution_options(populate_existing=True)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None or assignment.status != AssignmentStatusEnum.assigned.value:
        logger.info("assignment_expiry_stale", assignment_id=assignment_id)
        return False
    expires_at = as_utc(assignment.expires_at)
    if expires_at is not None and expires_at > now:
        logger.info("assignment_expiry_early", assignment_id=assignment_id)
        return False

    if not await _transition_assignment(
        db,
        assignment_id,
        AssignmentStatusEnum.assigned.value,
        AssignmentStatusEnum.expired.value,
        now,
    ):
        logger.info("assignment_expiry_lost_race", assignment_id=assignment_id)
        return False

    await expertise_index.decrement_load(db, assignment.assigned_to_id)
    logger.info(
        "assignment_expired",
        assignment_id=assignment_id,
        question_id=assignment.question_id,
        expert_id=assignment.assigned_to_id,
    )
    await send_notification(
        collab.notifier,
        assignment.assigned_to_id,
        "assignment_expired",
        {"assignment_id": assignment_id, "question_id": assignment.question_id},
    )
    await _requeue(db, collab, assignment.question_id, now)
    return True


async def record_answer(
    db: AsyncSession,
    collab: Collaborators,
    question: Question,
    expert_id: int,
    now: datetime,
) -> bool:
    """Mark the question answered when its accepted expert replies.

    Returns True if this message moved the question to ``answered``.
    """
    if question.status != QuestionStatusEnum.routed.value:
        return False
    assignment = await active_assignment(db, question.id)
    if (
        assignment is None
        or assignment.assigned_to_id != expert_id
        or assignment.status != AssignmentStatusEnum.accepted.value
    ):
        return False

    if not await _transition_assignment(
        db,
        assignment.id,
        AssignmentStatusEnum.accepted.value,
        AssignmentStatusEnum.answered.value,
        now,
    ):
        return False
    if not await _transition_question(db, question.id, "routed", "answered", now, answered_at=now):
        raise ConflictError()

    await expertise_index.decrement_load(db, expert_id)
    await _schedule_idle_check(db, question.id, now, ANSWERED_IDLE_CLOSE_DAYS)
    await apply_or_defer(
        db,
        collab,
        LedgerEntry(
            user_id=expert_id,
            reason="question_answered",
            source_event_id=f"assignment:{assignment.id}",
            content_type="question",
            content_id=question.id,
        ),
        now=now,
    )
    await db.refresh(question)

    logger.info("question_answered", question_id=question.id, expert_id=expert_id)
    await send_notification(
        collab.notifier,
        question.asker_id,
        "question_answered",
        {"question_id": question.id, "expert_id": expert_id},
    )
    return True


async def close_question(
    db: AsyncSession,
    collab: Collaborators,
    question_id: int,
    by_user_id: int,
    now: datetime | None = None,
) -> Question:
    """Close a question. While routed this withdraws the active offer."""
    now = now or utcnow()
    question = await get_question(db, question_id)
    if question.asker_id != by_user_id:
        user = await collab.directory.get_user(by_user_id)
        if user is None or not user.is_admin:
            raise PermissionDeniedError("Only the asker can close this question")

    if question.status == QuestionStatusEnum.closed.value:
        return question
    await _close(db, collab, question, "withdrawn_by_asker", now, closed_by=by_user_id)
    return question


async def _close(
    db: AsyncSession,
    collab: Collaborators,
    question: Question,
    release_reason: str,
    now: datetime,
    closed_by: int | None = None,
) -> None:
    previous = question.status
    released = None
    if previous == QuestionStatusEnum.routed.value:
        released = await _release_active(db, question.id, release_reason, now)
    if not await _transition_question(db, question.id, previous, "closed", now, closed_at=now):
        raise ConflictError("question changed state while closing")

    await _resolve_triage(db, question.id, now, closed_by)
    await cancel_jobs(db, "question_idle_check", _idle_key(question.id))
    await db.refresh(question)

    logger.info(
        "question_closed",
        question_id=question.id,
        previous_status=previous,
        closed_by=closed_by,
        reason=release_reason,
    )
    if released is not None:
        await send_notification(
            collab.notifier,
            released.assigned_to_id,
            "assignment_withdrawn",
            {"assignment_id": released.id, "question_id": question.id},
        )


async def assign_manually(
    db: AsyncSession,
    collab: Collaborators,
    question_id: int,
    expert_id: int,
    admin_id: int,
    now: datetime | None = None,
) -> Assignment:
    """Human triage: route a question to a chosen verified expert."""
    now = now or utcnow()
    admin = await collab.directory.get_user(admin_id)
    if admin is None or not admin.is_admin:
        raise PermissionDeniedError("Admin access required")

    question = await get_question(db, question_id)
    if question.status not in (QuestionStatusEnum.new.value, QuestionStatusEnum.routed.value):
        raise ValidationError(
            f"Cannot assign a question in status '{question.status}'", field="status"
        )
    if expert_id == question.asker_id:
        raise ValidationError("The asker cannot answer their own question", field="expert_id")
    if not await expertise_index.is_verified_expert(db, collab.directory, expert_id):
        raise ValidationError(f"User {expert_id} is not a verified expert", field="expert_id")
    if await active_assignment(db, question_id) is not None:
        raise ConflictError()

    if question.status == QuestionStatusEnum.new.value:
        won = await _transition_question(db, question_id, "new", "routed", now)
    else:
        # Same routed -> new -> routed cycle as a requeue; racing admins
        # serialize on the question row
        won = await _transition_question(db, question_id, "routed", "new", now)
        won = won and await _transition_question(db, question_id, "new", "routed", now)
    if not won:
        raise ConflictError()
    # Re-read under the row lock; a racing admin may have committed an offer
    if await active_assignment(db, question_id) is not None:
        raise ConflictError()
    await db.refresh(question)

    assignment = await _offer(db, collab, question, expert_id, now, assigned_by_id=admin_id)
    await _resolve_triage(db, question_id, now, admin_id)
    return assignment


async def touch_question(
    db: AsyncSession, question: Question, now: datetime
) -> None:
    """Record thread activity and restart the idle window."""
    await db.execute(
        update(Question).where(Question.id == question.id).values(last_activity_at=now)
    )
    if question.status == QuestionStatusEnum.closed.value:
        return
    days = (
        ANSWERED_IDLE_CLOSE_DAYS
        if question.status == QuestionStatusEnum.answered.value
        else UNENGAGED_IDLE_CLOSE_DAYS
    )
    await _schedule_idle_check(db, question.id, now, days)


# ---------------------------------------------------------------------------
# Scheduled job handlers
# ---------------------------------------------------------------------------


@job_handler("assignment_expiry")
async def _handle_assignment_expiry(db, collab, payload, now) -> None:
    await expire_assignment(db, collab, int(payload["assignment_id"]), now=now)


@job_handler("question_idle_check")
async def _handle_idle_check(db, collab, payload, now) -> None:
    question_id = int(payload["question_id"])
    result = await db.execute(select(Question).where(Question.id == question_id))
    question = result.scalar_one_or_none()
    if question is None or question.status == QuestionStatusEnum.closed.value:
        return

    scheduled_at = datetime.fromisoformat(payload["scheduled_at"])
    last_activity = as_utc(question.last_activity_at)
    if last_activity is not None and last_activity > as_utc(scheduled_at):
        logger.info("question_idle_check_stale", question_id=question_id)
        return

    await _close(db, collab, question, "idle_timeout", now)
    await send_notification(
        collab.notifier,
        question.asker_id,
        "question_auto_closed",
        {"question_id": question_id},
    )

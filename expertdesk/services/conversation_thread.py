"""Per-question message log.

Messages are append-only. The thread is readable by the asker and by every
expert who ever accepted the question; ``participants_of`` exposes that set
for the authorization layer. A reply from the accepted expert while the
question is routed is the answer that moves it to ``answered``.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.collaborators import Collaborators
from expertdesk.exceptions import PermissionDeniedError, ValidationError
from expertdesk.logging_config import get_logger
from expertdesk.models import (
    Assignment,
    AssignmentStatusEnum,
    Question,
    QuestionMessage,
    QuestionStatusEnum,
    utcnow,
)
from expertdesk.services import assignment_engine
from expertdesk.services.moderation_queue import ensure_not_suspended
from expertdesk.services.notification_service import send_notification

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 10000


async def participants_of(db: AsyncSession, question_id: int) -> set[int]:
    """Asker plus every currently-or-ever-accepted expert."""
    question = await assignment_engine.get_question(db, question_id)
    result = await db.execute(
        select(Assignment.assigned_to_id).where(
            Assignment.question_id == question_id,
            Assignment.accepted_at.is_not(None),
        )
    )
    return {question.asker_id, *result.scalars().all()}


async def ensure_can_read(
    db: AsyncSession, collab: Collaborators, question_id: int, viewer_id: int
) -> Question:
    question = await assignment_engine.get_question(db, question_id)
    if viewer_id in await participants_of(db, question_id):
        return question
    viewer = await collab.directory.get_user(viewer_id)
    if viewer is not None and viewer.is_admin:
        return question
    raise PermissionDeniedError("Not a participant in this conversation")


async def list_messages(
    db: AsyncSession, collab: Collaborators, question_id: int, viewer_id: int
) -> list[QuestionMessage]:
    await ensure_can_read(db, collab, question_id, viewer_id)
    result = await db.execute(
        select(QuestionMessage)
        .where(QuestionMessage.question_id == question_id)
        .order_by(QuestionMessage.created_at, QuestionMessage.id)
    )
    return list(result.scalars().all())


async def post_message(
    db: AsyncSession,
    collab: Collaborators,
    question_id: int,
    sender_id: int,
    body: str,
    now: datetime | None = None,
) -> QuestionMessage:
    """Append a message; the accepted expert's reply answers the question."""
    now = now or utcnow()
    text = (body or "").strip()
    if not text:
        raise ValidationError("Message body must not be empty", field="body")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message exceeds {MAX_MESSAGE_LENGTH} characters", field="body"
        )

    question = await assignment_engine.get_question(db, question_id)
    if question.status == QuestionStatusEnum.closed.value:
        raise ValidationError("Question is closed", field="question_id")

    active = await assignment_engine.active_assignment(db, question_id)
    is_active_expert = (
        active is not None
        and active.assigned_to_id == sender_id
        and active.status == AssignmentStatusEnum.accepted.value
    )
    if sender_id != question.asker_id and not is_active_expert:
        if sender_id not in await participants_of(db, question_id):
            raise PermissionDeniedError("Not a participant in this conversation")
    await ensure_not_suspended(db, sender_id, now)

    message = QuestionMessage(
        question_id=question_id,
        sender_id=sender_id,
        body=text,
        created_at=now,
    )
    db.add(message)
    await db.flush()

    if is_active_expert:
        await assignment_engine.record_answer(db, collab, question, sender_id, now)
    await assignment_engine.touch_question(db, question, now)

    logger.info(
        "message_posted",
        question_id=question_id,
        message_id=message.id,
        sender_id=sender_id,
    )
    recipients = await participants_of(db, question_id)
    for user_id in sorted(recipients - {sender_id}):
        await send_notification(
            collab.notifier,
            user_id,
            "message_posted",
            {"question_id": question_id, "message_id": message.id},
        )
    return message

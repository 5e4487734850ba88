"""Question endpoints: submit, browse, close, converse and manual routing."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.auth import get_collaborators, get_current_user, require_admin
from expertdesk.collaborators import Collaborators, UserInfo
from expertdesk.database import get_db
from expertdesk.logging_config import get_logger
from expertdesk.schemas import (
    AssignmentResponse,
    ManualAssignRequest,
    MessageCreate,
    MessageResponse,
    QuestionCreate,
    QuestionResponse,
    TriageEntryResponse,
)
from expertdesk.services import assignment_engine, conversation_thread

logger = get_logger(__name__)
router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.post("", response_model=QuestionResponse, status_code=201)
async def submit_question(
    body: QuestionCreate,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    """Submit a question. Succeeds even when it is left for human triage."""
    question = await assignment_engine.submit_question(
        db, collab, user.id, body.domain, body.area_id, body.tag_id, body.text
    )
    await db.commit()
    return QuestionResponse.model_validate(question)


@router.get("", response_model=list[QuestionResponse])
async def list_my_questions(
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
):
    questions = await assignment_engine.list_my_questions(db, user.id)
    return [QuestionResponse.model_validate(q) for q in questions]


@router.get("/triage", response_model=list[TriageEntryResponse])
async def list_triage(
    include_resolved: bool = False,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    """Questions waiting for a human to route them."""
    entries = await assignment_engine.list_triage(db, include_resolved=include_resolved)
    return [TriageEntryResponse.model_validate(e) for e in entries]


@router.get("/{question_id}", response_model=QuestionResponse)
async def get_question(
    question_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    question = await conversation_thread.ensure_can_read(db, collab, question_id, user.id)
    return QuestionResponse.model_validate(question)


@router.post("/{question_id}/close", response_model=QuestionResponse)
async def close_question(
    question_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    """Close (or withdraw, while routed) a question."""
    question = await assignment_engine.close_question(db, collab, question_id, user.id)
    await db.commit()
    return QuestionResponse.model_validate(question)


@router.post("/{question_id}/assign", response_model=AssignmentResponse, status_code=201)
async def assign_manually(
    question_id: int,
    body: ManualAssignRequest,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    assignment = await assignment_engine.assign_manually(
        db, collab, question_id, body.expert_id, admin.id
    )
    await db.commit()
    return AssignmentResponse.model_validate(assignment)


@router.get("/{question_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    question_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    messages = await conversation_thread.list_messages(db, collab, question_id, user.id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post("/{question_id}/messages", response_model=MessageResponse, status_code=201)
async def post_message(
    question_id: int,
    body: MessageCreate,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    message = await conversation_thread.post_message(db, collab, question_id, user.id, body.body)
    await db.commit()
    return MessageResponse.model_validate(message)

"""Expert inbox and offer responses."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.auth import get_collaborators, get_current_user
from expertdesk.collaborators import Collaborators, UserInfo
from expertdesk.database import get_db
from expertdesk.schemas import AssignmentRespondRequest, AssignmentResponse
from expertdesk.services import assignment_engine

router = APIRouter(prefix="/api/assignments", tags=["assignments"])


@router.get("/inbox", response_model=list[AssignmentResponse])
async def inbox(
    status: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
):
    """The caller's offers, each with its acceptance deadline."""
    assignments = await assignment_engine.list_inbox(db, user.id, status=status)
    return [AssignmentResponse.model_validate(a) for a in assignments]


@router.post("/{assignment_id}/respond", response_model=AssignmentResponse)
async def respond(
    assignment_id: int,
    body: AssignmentRespondRequest,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    assignment = await assignment_engine.respond_to_assignment(
        db, collab, assignment_id, user.id, body.decision, reason=body.reason
    )
    await db.commit()
    return AssignmentResponse.model_validate(assignment)

"""Admin endpoints: expertise grants and the reputation audit trail."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.auth import require_admin
from expertdesk.collaborators import UserInfo
from expertdesk.database import get_db
from expertdesk.logging_config import get_logger
from expertdesk.schemas import (
    ExpertiseGrant,
    ExpertiseResponse,
    ReputationAuditResponse,
    ReputationHistoryEntry,
)
from expertdesk.services import expertise_index, reputation_ledger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/expertise", response_model=list[ExpertiseResponse])
async def list_expertise(
    area_id: int | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    rows = await expertise_index.list_expertise(db, area_id=area_id)
    return [ExpertiseResponse.model_validate(r) for r in rows]


@router.post("/expertise", response_model=ExpertiseResponse, status_code=201)
async def grant_expertise(
    body: ExpertiseGrant,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    """Grant or re-level expertise for (user, area, tag)."""
    row = await expertise_index.grant_expertise(
        db, body.user_id, body.area_id, body.tag_id, body.level, granted_by_id=admin.id
    )
    await db.commit()
    return ExpertiseResponse.model_validate(row)


@router.delete("/expertise", status_code=204)
async def revoke_expertise(
    user_id: int = Query(...),
    area_id: int = Query(...),
    tag_id: int | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    await expertise_index.revoke_expertise(db, user_id, area_id, tag_id)
    await db.commit()
    return Response(status_code=204)


@router.get("/reputation/{user_id}", response_model=ReputationAuditResponse)
async def reputation_audit(
    user_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    """Cached score, replayed score and recent history for one user."""
    score = await reputation_ledger.score_of(db, user_id)
    replayed = await reputation_ledger.replay(db, user_id)
    entries = await reputation_ledger.history(db, user_id, limit=limit)
    logger.info("reputation_audited", user_id=user_id, admin_id=admin.id)
    return ReputationAuditResponse(
        user_id=user_id,
        score=score,
        trust_level=reputation_ledger.compute_trust_level(score),
        replayed_score=replayed,
        consistent=score == replayed,
        history=[ReputationHistoryEntry.model_validate(e) for e in entries],
    )

"""Moderation endpoints: report intake for everyone, the review queue for moderators."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.auth import get_collaborators, get_current_user, require_admin
from expertdesk.collaborators import Collaborators, UserInfo
from expertdesk.database import get_db
from expertdesk.schemas import (
    ModerationActionResponse,
    QueueStatsResponse,
    ReportCreate,
    ReportFiledResponse,
    ReportResolveRequest,
    ReportResponse,
    SuppressionResponse,
    SuspendRequest,
    SuspensionResponse,
    WarnRequest,
)
from expertdesk.services import moderation_queue

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


@router.post("/reports", response_model=ReportFiledResponse, status_code=201)
async def file_report(
    body: ReportCreate,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
    collab: Collaborators = Depends(get_collaborators),
):
    """Report content or a user. Repeat reports on open items are merged."""
    report = await moderation_queue.file_report(
        db, collab, user.id, body.content_type, body.content_id, body.reason, body.description
    )
    await db.commit()
    return ReportFiledResponse.model_validate(report)


@router.get("/suppressed", response_model=SuppressionResponse)
async def content_suppressed(
    content_type: str = Query(...),
    content_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
):
    """Whether the presentation layer should hide this content pending review."""
    suppressed = await moderation_queue.is_content_suppressed(db, content_type, content_id)
    return SuppressionResponse(
        content_type=content_type, content_id=content_id, suppressed=suppressed
    )


@router.get("/reports", response_model=list[ReportResponse])
async def list_reports(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    reports = await moderation_queue.list_reports(db, status=status, limit=limit)
    return [ReportResponse.model_validate(r) for r in reports]


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    return QueueStatsResponse(**await moderation_queue.queue_stats(db))


@router.post("/reports/claim", response_model=ReportResponse)
async def claim_next(
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    """Claim the highest-priority pending report. 204 when the queue is empty."""
    report = await moderation_queue.claim_next_report(db, collab, admin.id)
    await db.commit()
    if report is None:
        return Response(status_code=204)
    return ReportResponse.model_validate(report)


@router.post("/reports/{report_id}/release", response_model=ReportResponse)
async def release_claim(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
):
    await moderation_queue.release_claim(db, report_id, admin.id)
    await db.commit()
    report = await moderation_queue.get_report(db, report_id)
    return ReportResponse.model_validate(report)


@router.post("/reports/{report_id}/resolve", response_model=ReportResponse)
async def resolve(
    report_id: int,
    body: ReportResolveRequest,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    report = await moderation_queue.resolve_report(
        db, collab, report_id, admin.id, body.decision, notes=body.notes
    )
    await db.commit()
    return ReportResponse.model_validate(report)


@router.post("/users/{user_id}/warn", response_model=ModerationActionResponse, status_code=201)
async def warn_user(
    user_id: int,
    body: WarnRequest,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    action = await moderation_queue.warn_user(
        db, collab, admin.id, user_id, body.reason, report_id=body.report_id
    )
    await db.commit()
    return ModerationActionResponse.model_validate(action)


@router.post("/users/{user_id}/suspend", response_model=SuspensionResponse, status_code=201)
async def suspend_user(
    user_id: int,
    body: SuspendRequest,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    suspension = await moderation_queue.suspend_user(
        db,
        collab,
        admin.id,
        user_id,
        body.reason,
        duration_days=body.duration_days,
        report_id=body.report_id,
    )
    await db.commit()
    return SuspensionResponse.model_validate(suspension)


@router.post("/suspensions/{suspension_id}/lift", response_model=SuspensionResponse)
async def lift_suspension(
    suspension_id: int,
    db: AsyncSession = Depends(get_db),
    admin: UserInfo = Depends(require_admin),
    collab: Collaborators = Depends(get_collaborators),
):
    suspension = await moderation_queue.lift_suspension(db, collab, admin.id, suspension_id)
    await db.commit()
    return SuspensionResponse.model_validate(suspension)

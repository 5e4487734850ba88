"""Area and tag browsing for the question composer."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.auth import get_current_user
from expertdesk.collaborators import UserInfo
from expertdesk.database import get_db
from expertdesk.schemas import AreaResponse, TagResponse
from expertdesk.services import taxonomy_service

router = APIRouter(prefix="/api/qa", tags=["taxonomy"])


@router.get("/areas", response_model=list[AreaResponse])
async def list_areas(
    domain: str = Query(...),
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
):
    """Areas of a domain in display order."""
    areas = await taxonomy_service.list_areas(db, domain)
    return [AreaResponse.model_validate(a) for a in areas]


@router.get("/areas/{area_id}/tags", response_model=list[TagResponse])
async def list_tags(
    area_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(get_current_user),
):
    tags = await taxonomy_service.list_tags(db, area_id)
    return [TagResponse.model_validate(t) for t in tags]

"""Area/tag taxonomy lookups used by question intake and the admin screens."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.exceptions import ValidationError
from expertdesk.models import DomainEnum, QaArea, QaTag


def validate_domain(domain: str) -> str:
    if domain not in {d.value for d in DomainEnum}:
        raise ValidationError(f"Unknown domain '{domain}'", field="domain")
    return domain


async def list_areas(db: AsyncSession, domain: str) -> list[QaArea]:
    validate_domain(domain)
    result = await db.execute(
        select(QaArea).where(QaArea.domain == domain).order_by(QaArea.order, QaArea.id)
    )
    return list(result.scalars().all())


async def list_tags(db: AsyncSession, area_id: int) -> list[QaTag]:
    result = await db.execute(
        select(QaTag).where(QaTag.area_id == area_id).order_by(QaTag.order, QaTag.id)
    )
    return list(result.scalars().all())


async def resolve_target(
    db: AsyncSession, domain: str, area_id: int, tag_id: int
) -> tuple[QaArea, QaTag]:
    """Check that the area belongs to the domain and the tag to the area.

    Raises:
        ValidationError: on any mismatch or unknown id
    """
    validate_domain(domain)
    area = (await db.execute(select(QaArea).where(QaArea.id == area_id))).scalar_one_or_none()
    if area is None or area.domain != domain:
        raise ValidationError(f"Unknown area {area_id} for domain '{domain}'", field="area_id")
    tag = (await db.execute(select(QaTag).where(QaTag.id == tag_id))).scalar_one_or_none()
    if tag is None or tag.area_id != area.id:
        raise ValidationError(f"Tag {tag_id} does not belong to area {area_id}", field="tag_id")
    return area, tag

"""Expertise index: ranks verified experts for an (area, tag) pair.

A derived view over ``expertise`` rows, the reputation ledger and the live
``expert_loads`` counters. Nothing is cached: every call re-reads current
state, so a re-query after a decline or expiry sees fresh load and trust.
"""

from dataclasses import dataclass

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.collaborators import UserDirectory
from expertdesk.database import insert_ignore
from expertdesk.exceptions import NotFoundError, ValidationError
from expertdesk.logging_config import get_logger
from expertdesk.models import (
    Expertise,
    ExpertiseLevelEnum,
    ExpertLoad,
    QaArea,
    QaTag,
    utcnow,
)
from expertdesk.services.reputation_ledger import trust_levels_of

logger = get_logger(__name__)

# Lower tier sorts first
_TIERS = {
    (ExpertiseLevelEnum.primary.value, True): 0,
    (ExpertiseLevelEnum.primary.value, False): 1,
    (ExpertiseLevelEnum.secondary.value, True): 2,
    (ExpertiseLevelEnum.secondary.value, False): 3,
}


@dataclass(frozen=True)
class RankedExpert:
    user_id: int
    tier: int
    trust_level: int
    open_assignments: int


async def verified_experts(
    db: AsyncSession, directory: UserDirectory, user_ids: list[int]
) -> set[int]:
    """Single capability check: directory-verified and holding any expertise."""
    if not user_ids:
        return set()
    result = await db.execute(
        select(Expertise.user_id).where(Expertise.user_id.in_(user_ids)).distinct()
    )
    verified: set[int] = set()
    for user_id in result.scalars().all():
        user = await directory.get_user(user_id)
        if user is not None and user.verified:
            verified.add(user_id)
    return verified


async def is_verified_expert(
    db: AsyncSession, directory: UserDirectory, user_id: int
) -> bool:
    return user_id in await verified_experts(db, directory, [user_id])


async def load_counts(db: AsyncSession, user_ids: list[int]) -> dict[int, int]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(ExpertLoad.user_id, ExpertLoad.open_assignments).where(
            ExpertLoad.user_id.in_(user_ids)
        )
    )
    counts = {row.user_id: int(row.open_assignments) for row in result.all()}
    return {uid: counts.get(uid, 0) for uid in user_ids}


async def rank_candidates(
    db: AsyncSession,
    directory: UserDirectory,
    area_id: int,
    tag_id: int | None,
) -> list[RankedExpert]:
    """Eligible experts for the pair with their ranking keys, best first."""
    tag_match = Expertise.tag_id.is_(None)
    if tag_id is not None:
        tag_match = or_(Expertise.tag_id == tag_id, Expertise.tag_id.is_(None))
    result = await db.execute(
        select(Expertise.user_id, Expertise.level, Expertise.tag_id).where(
            Expertise.area_id == area_id,
            tag_match,
        )
    )

    # A user holding several rows keeps their best tier
    best_tier: dict[int, int] = {}
    for row in result.all():
        tier = _TIERS[(row.level, row.tag_id is not None)]
        if tier < best_tier.get(row.user_id, len(_TIERS)):
            best_tier[row.user_id] = tier

    verified = await verified_experts(db, directory, sorted(best_tier))
    eligible = [uid for uid in sorted(best_tier) if uid in verified]

    trust = await trust_levels_of(db, eligible)
    loads = await load_counts(db, eligible)
    ranked = [
        RankedExpert(
            user_id=uid,
            tier=best_tier[uid],
            trust_level=trust[uid],
            open_assignments=loads[uid],
        )
        for uid in eligible
    ]
    ranked.sort(key=lambda r: (r.tier, -r.trust_level, r.open_assignments, r.user_id))
    return ranked


async def candidates(
    db: AsyncSession,
    directory: UserDirectory,
    area_id: int,
    tag_id: int | None,
) -> list[int]:
    """Ordered user ids of eligible experts; empty if nobody qualifies."""
    return [r.user_id for r in await rank_candidates(db, directory, area_id, tag_id)]


# ---------------------------------------------------------------------------
# Live load counters (atomic increment / decrement)
# ---------------------------------------------------------------------------


async def increment_load(db: AsyncSession, user_id: int) -> None:
    await insert_ignore(db, ExpertLoad, user_id=user_id, open_assignments=0)
    await db.execute(
        update(ExpertLoad)
        .where(ExpertLoad.user_id == user_id)
        .values(open_assignments=ExpertLoad.open_assignments + 1, updated_at=utcnow())
    )


async def decrement_load(db: AsyncSession, user_id: int) -> None:
    result = await db.execute(
        update(ExpertLoad)
        .where(ExpertLoad.user_id == user_id, ExpertLoad.open_assignments > 0)
        .values(open_assignments=ExpertLoad.open_assignments - 1, updated_at=utcnow())
    )
    if result.rowcount == 0:
        logger.warning("expert_load_underflow", user_id=user_id)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def _validate_area_tag(db: AsyncSession, area_id: int, tag_id: int | None) -> None:
    area = (await db.execute(select(QaArea).where(QaArea.id == area_id))).scalar_one_or_none()
    if area is None:
        raise ValidationError(f"Unknown area {area_id}", field="area_id")
    if tag_id is not None:
        tag = (await db.execute(select(QaTag).where(QaTag.id == tag_id))).scalar_one_or_none()
        if tag is None or tag.area_id != area_id:
            raise ValidationError(
                f"Tag {tag_id} does not belong to area {area_id}", field="tag_id"
            )


def _same_slot(user_id: int, area_id: int, tag_id: int | None):
    tag_clause = Expertise.tag_id.is_(None) if tag_id is None else Expertise.tag_id == tag_id
    return (Expertise.user_id == user_id, Expertise.area_id == area_id, tag_clause)


async def grant_expertise(
    db: AsyncSession,
    user_id: int,
    area_id: int,
    tag_id: int | None,
    level: str,
    granted_by_id: int | None = None,
) -> Expertise:
    """Create or update the expertise row for (user, area, tag)."""
    if level not in {lvl.value for lvl in ExpertiseLevelEnum}:
        raise ValidationError(f"Unknown expertise level '{level}'", field="level")
    await _validate_area_tag(db, area_id, tag_id)

    result = await db.execute(select(Expertise).where(*_same_slot(user_id, area_id, tag_id)))
    row = result.scalar_one_or_none()
    if row is None:
        row = Expertise(
            user_id=user_id,
            area_id=area_id,
            tag_id=tag_id,
            level=level,
            granted_by_id=granted_by_id,
        )
        db.add(row)
    else:
        row.level = level
        row.granted_by_id = granted_by_id
    await db.flush()

    logger.info(
        "expertise_granted",
        user_id=user_id,
        area_id=area_id,
        tag_id=tag_id,
        level=level,
        granted_by=granted_by_id,
    )
    return row


async def revoke_expertise(
    db: AsyncSession, user_id: int, area_id: int, tag_id: int | None
) -> None:
    result = await db.execute(select(Expertise).where(*_same_slot(user_id, area_id, tag_id)))
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError("Expertise", user_id)
    await db.delete(row)
    await db.flush()
    logger.info("expertise_revoked", user_id=user_id, area_id=area_id, tag_id=tag_id)


async def list_expertise(db: AsyncSession, area_id: int | None = None) -> list[Expertise]:
    stmt = select(Expertise).order_by(Expertise.area_id, Expertise.user_id, Expertise.id)
    if area_id is not None:
        stmt = stmt.where(Expertise.area_id == area_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())

"""Seed script: loads the apologetics/polemics area and tag taxonomy.

Safe to re-run: existing areas and tags (matched by slug) are left alone.

Usage:
    python -m expertdesk.seed
"""

import asyncio
import os

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expertdesk.database import close_db, get_db_session, init_db
from expertdesk.logging_config import configure_logging, get_logger
from expertdesk.models import QaArea, QaTag

logger = get_logger(__name__)

# (domain, name, slug, description, [(tag name, tag slug, tag description), ...])
TAXONOMY = [
    ("apologetics", "Evidence", "evidence", "Historical and archaeological evidence for Christianity", [
        ("Manuscripts", "manuscripts", "Biblical manuscript evidence"),
        ("Archaeology", "archaeology", "Archaeological findings supporting biblical accounts"),
        ("Resurrection", "resurrection", "Historical evidence for the resurrection of Jesus"),
        ("Old Testament Prophecy", "old-testament-prophecy", "Messianic prophecies and their fulfillment"),
        ("Fulfilled Prophecy", "fulfilled-prophecy", "Prophecies fulfilled in history"),
        ("Eyewitness Testimony", "eyewitness-testimony", "Gospel eyewitness accounts"),
    ]),
    ("apologetics", "Theology", "theology", "Core Christian doctrines and theological concepts", [
        ("Trinity", "trinity", "The doctrine of the Trinity"),
        ("Christology", "christology", "The nature and person of Christ"),
        ("Soteriology", "soteriology", "Doctrine of salvation"),
        ("Pneumatology", "pneumatology", "Doctrine of the Holy Spirit"),
        ("Ecclesiology", "ecclesiology", "Doctrine of the Church"),
        ("Eschatology", "eschatology", "End times and future events"),
        ("Theistic Arguments", "theistic-arguments", "Arguments for the existence of God"),
    ]),
    ("apologetics", "History", "history", "Church history and historical Christianity", [
        ("Early Church", "early-church", "First centuries of Christianity"),
        ("Church Fathers", "church-fathers", "Patristic writings and teachings"),
        ("Councils", "councils", "Ecumenical councils and creeds"),
        ("Reformation", "reformation", "Protestant Reformation history"),
        ("Canon Formation", "canon-formation", "How the biblical canon was formed"),
        ("Historical Jesus", "historical-jesus", "Historical evidence for Jesus of Nazareth"),
    ]),
    ("apologetics", "Objections", "objections", "Common objections to Christianity", [
        ("Problem of Evil", "problem-of-evil", "Why does God allow suffering?"),
        ("Science vs Faith", "science-vs-faith", "Perceived conflicts between science and Christianity"),
        ("Biblical Contradictions", "biblical-contradictions", "Alleged contradictions in Scripture"),
        ("Textual Criticism", "textual-criticism", "Questions about biblical manuscript transmission"),
        ("Moral Objections", "moral-objections", "Moral and ethical objections to Christianity"),
        ("Other Religions", "other-religions", "Pluralism and exclusive truth claims"),
    ]),
    ("apologetics", "Philosophy", "philosophy", "Philosophical arguments and reasoning about God and faith", [
        ("Problem of Evil", "problem-of-evil", "Philosophical responses to suffering and evil"),
        ("Existence of God", "existence-of-god", "Arguments for God's existence"),
        ("Moral Philosophy", "moral-philosophy", "Ethics and moral foundations"),
        ("Epistemology", "epistemology", "How we know what we know"),
        ("Free Will", "free-will", "Human freedom and divine sovereignty"),
    ]),
    ("apologetics", "Science", "science", "Exploring the relationship between science and Christian faith", [
        ("Faith and Science", "faith-and-science", "How faith and science relate"),
        ("Origins", "origins", "Creation, evolution, and origins of life"),
        ("Cosmology", "cosmology", "The origin and nature of the universe"),
        ("Miracles", "miracles", "Scientific considerations of miraculous events"),
        ("Intelligent Design", "intelligent-design", "Design arguments in nature"),
    ]),
    ("apologetics", "Perspectives", "perspectives", "Different Christian traditions and viewpoints", [
        ("Orthodox", "orthodox", "Eastern Orthodox perspective"),
        ("Catholic", "catholic", "Roman Catholic perspective"),
        ("Protestant", "protestant", "Protestant perspective"),
        ("Reformed", "reformed", "Reformed theology perspective"),
        ("Icons", "icons", "Theology and use of icons"),
        ("Sacraments", "sacraments", "Sacramental theology across traditions"),
        ("Mary", "mary", "Mariology across traditions"),
    ]),
    ("polemics", "Evidence", "evidence", "Examining claims and evidence of other worldviews", [
        ("Islamic Claims", "islamic-claims", "Examining Islamic historical and textual claims"),
        ("Mormon Claims", "mormon-claims", "Examining LDS historical claims"),
        ("Atheist Arguments", "atheist-arguments", "Responding to atheistic arguments"),
        ("Historical Reliability", "historical-reliability", "Comparing historical reliability of religious texts"),
    ]),
    ("polemics", "Theology", "theology", "Theological differences with other religions", [
        ("Islamic Theology", "islamic-theology", "Differences in core doctrines"),
        ("Mormon Theology", "mormon-theology", "LDS doctrinal differences"),
        ("Jehovah's Witnesses", "jehovahs-witnesses", "JW theological differences"),
        ("New Age", "new-age", "New Age and Eastern religious concepts"),
    ]),
    ("polemics", "History", "history", "Historical analysis of other religious movements", [
        ("Origins of Islam", "origins-of-islam", "Historical development of Islam"),
        ("Mormon History", "mormon-history", "Historical examination of LDS church"),
        ("Cult Origins", "cult-origins", "Historical origins of modern religious movements"),
    ]),
    ("polemics", "Objections", "objections", "Addressing critiques from other worldviews", [
        ("Quran vs Bible", "quran-vs-bible", "Islamic critiques of the Bible"),
        ("Biblical Corruption", "biblical-corruption", "Claims of biblical text corruption"),
        ("Trinity Objections", "trinity-objections", "Non-Christian objections to Trinity"),
        ("Deity of Christ", "deity-of-christ", "Objections to Christ's divinity"),
    ]),
    ("polemics", "Perspectives", "perspectives", "Interfaith dialogue and understanding", [
        ("Interfaith Dialogue", "interfaith-dialogue", "Approaches to interfaith conversation"),
        ("Cultural Context", "cultural-context", "Cultural considerations in dialogue"),
        ("Evangelism Strategy", "evangelism-strategy", "Effective evangelism approaches"),
    ]),
]


async def seed_taxonomy(db: AsyncSession) -> tuple[int, int]:
    """Insert missing areas and tags. Returns (areas_created, tags_created)."""
    areas_created = tags_created = 0
    area_order: dict[str, int] = {}

    for domain, name, slug, description, tags in TAXONOMY:
        area_order[domain] = area_order.get(domain, 0) + 1
        result = await db.execute(
            select(QaArea).where(QaArea.domain == domain, QaArea.slug == slug)
        )
        area = result.scalar_one_or_none()
        if area is None:
            area = QaArea(
                domain=domain,
                name=name,
                slug=slug,
                description=description,
                order=area_order[domain],
            )
            db.add(area)
            await db.flush()
            areas_created += 1

        for order, (tag_name, tag_slug, tag_description) in enumerate(tags, start=1):
            result = await db.execute(
                select(QaTag.id).where(QaTag.area_id == area.id, QaTag.slug == tag_slug)
            )
            if result.scalar_one_or_none() is not None:
                continue
            db.add(
                QaTag(
                    area_id=area.id,
                    name=tag_name,
                    slug=tag_slug,
                    description=tag_description,
                    order=order,
                )
            )
            tags_created += 1

    await db.flush()
    return areas_created, tags_created


async def seed() -> None:
    configure_logging(log_format=os.getenv("LOG_FORMAT", "console"))
    await init_db()

    async with get_db_session() as db:
        areas, tags = await seed_taxonomy(db)
        await db.commit()

    logger.info("seed_complete", areas_created=areas, tags_created=tags)
    await close_db()


if __name__ == "__main__":
    asyncio.run(seed())

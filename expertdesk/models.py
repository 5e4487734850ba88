"""SQLAlchemy ORM models for questions, routing, reputation and moderation."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enums (stored as TEXT guarded by CHECK constraints)
# ---------------------------------------------------------------------------


class DomainEnum(str, enum.Enum):
    apologetics = "apologetics"
    polemics = "polemics"


class QuestionStatusEnum(str, enum.Enum):
    new = "new"
    routed = "routed"
    answered = "answered"
    closed = "closed"


class AssignmentStatusEnum(str, enum.Enum):
    assigned = "assigned"
    accepted = "accepted"
    declined = "declined"
    answered = "answered"
    expired = "expired"


ACTIVE_ASSIGNMENT_STATUSES = (
    AssignmentStatusEnum.assigned.value,
    AssignmentStatusEnum.accepted.value,
)


class ExpertiseLevelEnum(str, enum.Enum):
    primary = "primary"
    secondary = "secondary"


class ReportStatusEnum(str, enum.Enum):
    pending = "pending"
    reviewing = "reviewing"
    resolved = "resolved"
    dismissed = "dismissed"


OPEN_REPORT_STATUSES = (
    ReportStatusEnum.pending.value,
    ReportStatusEnum.reviewing.value,
)


class JobStatusEnum(str, enum.Enum):
    pending = "pending"
    running = "running"
    done = "done"
    cancelled = "cancelled"
    failed = "failed"


def _check_in(column: str, enum_cls: type[enum.Enum], name: str) -> CheckConstraint:
    values = ",".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class QaArea(Base):
    __tablename__ = "qa_areas"
    __table_args__ = (
        UniqueConstraint("domain", "slug", name="uq_qa_areas_domain_slug"),
        _check_in("domain", DomainEnum, "ck_qa_area_domain"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    tags: Mapped[list["QaTag"]] = relationship(back_populates="area")


class QaTag(Base):
    __tablename__ = "qa_tags"
    __table_args__ = (
        UniqueConstraint("area_id", "slug", name="uq_qa_tags_area_slug"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    area_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("qa_areas.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    area: Mapped["QaArea"] = relationship(back_populates="tags")


# ---------------------------------------------------------------------------
# Expertise + live load
# ---------------------------------------------------------------------------


class Expertise(Base):
    __tablename__ = "expertise"
    __table_args__ = (
        UniqueConstraint("user_id", "area_id", "tag_id", name="uq_expertise_user_area_tag"),
        # NULLs never collide in the constraint above
        Index(
            "uq_expertise_user_area_null_tag",
            "user_id",
            "area_id",
            unique=True,
            postgresql_where=text("tag_id IS NULL"),
            sqlite_where=text("tag_id IS NULL"),
        ),
        Index("idx_expertise_area_tag", "area_id", "tag_id"),
        _check_in("level", ExpertiseLevelEnum, "ck_expertise_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    area_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("qa_areas.id", ondelete="CASCADE"), nullable=False
    )
    # NULL = area-level (broader) match
    tag_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("qa_tags.id", ondelete="CASCADE")
    )
    level: Mapped[str] = mapped_column(Text, nullable=False)
    granted_by_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ExpertLoad(Base):
    __tablename__ = "expert_loads"
    __table_args__ = (
        CheckConstraint("open_assignments >= 0", name="ck_expert_load_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    open_assignments: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Questions, assignments, messages
# ---------------------------------------------------------------------------


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_asker", "asker_id"),
        Index("idx_questions_status", "status"),
        _check_in("status", QuestionStatusEnum, "ck_question_status"),
        _check_in("domain", DomainEnum, "ck_question_domain"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asker_id: Mapped[int] = mapped_column(Integer, nullable=False)
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    area_id: Mapped[int] = mapped_column(Integer, ForeignKey("qa_areas.id"), nullable=False)
    tag_id: Mapped[int] = mapped_column(Integer, ForeignKey("qa_tags.id"), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="new", server_default=text("'new'")
    )
    answered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    assignments: Mapped[list["Assignment"]] = relationship(
        back_populates="question", order_by="Assignment.id"
    )


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        Index("idx_assignments_question", "question_id"),
        Index("idx_assignments_assignee_status", "assigned_to_id", "status"),
        _check_in("status", AssignmentStatusEnum, "ck_assignment_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    assigned_to_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # NULL = system-initiated
    assigned_by_id: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="assigned", server_default=text("'assigned'")
    )
    reason: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Set once on accept; survives a later decline
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    question: Mapped["Question"] = relationship(back_populates="assignments")


class QuestionMessage(Base):
    __tablename__ = "question_messages"
    __table_args__ = (
        Index("idx_question_messages_question", "question_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class TriageEntry(Base):
    __tablename__ = "triage_entries"
    __table_args__ = (
        Index("idx_triage_open", "resolved_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolved_by_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------


class ReputationRecord(Base):
    __tablename__ = "reputation_records"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))
    total_reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    valid_reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    false_reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    helpful_flags: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    warnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    suspensions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_violation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ReputationHistory(Base):
    __tablename__ = "reputation_history"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_reputation_history_idempotency"),
        Index("idx_reputation_history_user", "user_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    source_event_id: Mapped[str] = mapped_column(Text, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(Text, nullable=False)
    score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str | None] = mapped_column(Text)
    content_id: Mapped[int | None] = mapped_column(Integer)
    moderator_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------


class ContentReport(Base):
    __tablename__ = "content_reports"
    __table_args__ = (
        Index("idx_content_reports_content", "content_type", "content_id", "status"),
        Index("idx_content_reports_queue", "status", "priority", "created_at"),
        _check_in("status", ReportStatusEnum, "ck_content_report_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reporter_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="pending", server_default=text("'pending'")
    )
    priority: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    corroboration_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    auto_suppressed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    moderator_id: Mapped[int | None] = mapped_column(Integer)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    moderator_notes: Mapped[str | None] = mapped_column(Text)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    corroborations: Mapped[list["ReportCorroboration"]] = relationship(
        back_populates="report", order_by="ReportCorroboration.id"
    )


class ReportCorroboration(Base):
    __tablename__ = "report_corroborations"
    __table_args__ = (
        UniqueConstraint("report_id", "reporter_id", name="uq_report_corroboration_reporter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("content_reports.id", ondelete="CASCADE"), nullable=False
    )
    reporter_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reporter_trust: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    report: Mapped["ContentReport"] = relationship(back_populates="corroborations")


class ModerationAction(Base):
    __tablename__ = "moderation_actions"
    __table_args__ = (
        Index("idx_moderation_actions_target", "target_user_id"),
        CheckConstraint(
            "action IN ('remove_content','dismiss_report','warn','suspend')",
            name="ck_moderation_action",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    moderator_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    report_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("content_reports.id", ondelete="SET NULL")
    )
    content_type: Mapped[str | None] = mapped_column(Text)
    content_id: Mapped[int | None] = mapped_column(Integer)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class UserSuspension(Base):
    __tablename__ = "user_suspensions"
    __table_args__ = (
        Index("idx_user_suspensions_user", "user_id"),
        Index("idx_user_suspensions_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    # NULL = permanent
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    lifted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# Durable timers / deferred work
# ---------------------------------------------------------------------------


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        Index("idx_scheduled_jobs_due", "status", "run_at"),
        Index("idx_scheduled_jobs_dedupe", "kind", "dedupe_key"),
        _check_in("status", JobStatusEnum, "ck_scheduled_job_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="pending", server_default=text("'pending'")
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    dedupe_key: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

"""Initial schema: taxonomy, routing, reputation, moderation and scheduled jobs.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # --- Taxonomy ---
    op.create_table(
        "qa_areas",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("domain", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("domain", "slug", name="uq_qa_areas_domain_slug"),
        sa.CheckConstraint("domain IN ('apologetics','polemics')", name="ck_qa_area_domain"),
    )

    op.create_table(
        "qa_tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("area_id", sa.Integer(), sa.ForeignKey("qa_areas.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("area_id", "slug", name="uq_qa_tags_area_slug"),
    )

    # --- Expertise + live load ---
    op.create_table(
        "expertise",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("area_id", sa.Integer(), sa.ForeignKey("qa_areas.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("qa_tags.id", ondelete="CASCADE")),
        sa.Column("level", sa.Text(), nullable=False),
        sa.Column("granted_by_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "area_id", "tag_id", name="uq_expertise_user_area_tag"),
        sa.CheckConstraint("level IN ('primary','secondary')", name="ck_expertise_level"),
    )
    op.create_index(
        "uq_expertise_user_area_null_tag",
        "expertise",
        ["user_id", "area_id"],
        unique=True,
        postgresql_where=sa.text("tag_id IS NULL"),
    )
    op.create_index("idx_expertise_area_tag", "expertise", ["area_id", "tag_id"])

    op.create_table(
        "expert_loads",
        sa.Column("user_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("open_assignments", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("open_assignments >= 0", name="ck_expert_load_non_negative"),
    )

    # --- Questions ---
    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("asker_id", sa.Integer(), nullable=False),
        sa.Column("domain", sa.Text(), nullable=False),
        sa.Column("area_id", sa.Integer(), sa.ForeignKey("qa_areas.id"), nullable=False),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("qa_tags.id"), nullable=False),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'new'")),
        sa.Column("answered_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('new','routed','answered','closed')", name="ck_question_status"),
        sa.CheckConstraint("domain IN ('apologetics','polemics')", name="ck_question_domain"),
    )
    op.create_index("idx_questions_asker", "questions", ["asker_id"])
    op.create_index("idx_questions_status", "questions", ["status"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_to_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by_id", sa.Integer()),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'assigned'")),
        sa.Column("reason", sa.Text()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('assigned','accepted','declined','answered','expired')",
            name="ck_assignment_status",
        ),
    )
    op.create_index("idx_assignments_question", "assignments", ["question_id"])
    op.create_index("idx_assignments_assignee_status", "assignments", ["assigned_to_id", "status"])

    op.create_table(
        "question_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_question_messages_question", "question_messages", ["question_id", "created_at"])

    op.create_table(
        "triage_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("resolved_by_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_triage_open", "triage_entries", ["resolved_at", "created_at"])

    # --- Reputation ---
    op.create_table(
        "reputation_records",
        sa.Column("user_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("total_reports", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_reports", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("false_reports", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("helpful_flags", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("warnings", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("suspensions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_violation_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    op.create_table(
        "reputation_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("source_event_id", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False),
        sa.Column("score_after", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.Text()),
        sa.Column("content_id", sa.Integer()),
        sa.Column("moderator_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_reputation_history_idempotency"),
    )
    op.create_index("idx_reputation_history_user", "reputation_history", ["user_id", "id"])

    # --- Moderation ---
    op.create_table(
        "content_reports",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reporter_id", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("content_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("priority", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("corroboration_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("auto_suppressed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("moderator_id", sa.Integer()),
        sa.Column("claimed_at", sa.DateTime(timezone=True)),
        sa.Column("moderator_notes", sa.Text()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','reviewing','resolved','dismissed')",
            name="ck_content_report_status",
        ),
    )
    op.create_index("idx_content_reports_content", "content_reports", ["content_type", "content_id", "status"])
    op.create_index("idx_content_reports_queue", "content_reports", ["status", "priority", "created_at"])

    op.create_table(
        "report_corroborations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("report_id", sa.Integer(), sa.ForeignKey("content_reports.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reporter_id", sa.Integer(), nullable=False),
        sa.Column("reporter_trust", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("report_id", "reporter_id", name="uq_report_corroboration_reporter"),
    )

    op.create_table(
        "moderation_actions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("moderator_id", sa.Integer(), nullable=False),
        sa.Column("target_user_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("report_id", sa.Integer(), sa.ForeignKey("content_reports.id", ondelete="SET NULL")),
        sa.Column("content_type", sa.Text()),
        sa.Column("content_id", sa.Integer()),
        sa.Column("reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "action IN ('remove_content','dismiss_report','warn','suspend')",
            name="ck_moderation_action",
        ),
    )
    op.create_index("idx_moderation_actions_target", "moderation_actions", ["target_user_id"])

    op.create_table(
        "user_suspensions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("admin_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("lifted_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_user_suspensions_user", "user_suspensions", ["user_id"])
    op.create_index("idx_user_suspensions_expires", "user_suspensions", ["expires_at"])

    # --- Durable timers ---
    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("payload", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("dedupe_key", sa.Text()),
        sa.Column("last_error", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','running','done','cancelled','failed')",
            name="ck_scheduled_job_status",
        ),
    )
    op.create_index("idx_scheduled_jobs_due", "scheduled_jobs", ["status", "run_at"])
    op.create_index("idx_scheduled_jobs_dedupe", "scheduled_jobs", ["kind", "dedupe_key"])


def downgrade() -> None:
    op.drop_table("scheduled_jobs")
    op.drop_table("user_suspensions")
    op.drop_table("moderation_actions")
    op.drop_table("report_corroborations")
    op.drop_table("content_reports")
    op.drop_table("reputation_history")
    op.drop_table("reputation_records")
    op.drop_table("triage_entries")
    op.drop_table("question_messages")
    op.drop_table("assignments")
    op.drop_table("questions")
    op.drop_table("expert_loads")
    op.drop_table("expertise")
    op.drop_table("qa_tags")
    op.drop_table("qa_areas")

"""Pydantic v2 request/response schemas for all endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class TagResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    area_id: int
    name: str
    slug: str
    description: str | None
    order: int


class AreaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    domain: str
    name: str
    slug: str
    description: str | None
    order: int


# ---------------------------------------------------------------------------
# Questions & assignments
# ---------------------------------------------------------------------------


class QuestionCreate(BaseModel):
    domain: Literal["apologetics", "polemics"]
    area_id: int
    tag_id: int
    text: str = Field(..., min_length=1, max_length=5000)


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asker_id: int
    domain: str
    area_id: int
    tag_id: int
    text: str = Field(validation_alias="question_text")
    status: str
    answered_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    assigned_to_id: int
    assigned_by_id: int | None
    status: str
    reason: str | None
    expires_at: datetime | None
    responded_at: datetime | None
    created_at: datetime


class AssignmentRespondRequest(BaseModel):
    decision: Literal["accept", "decline"]
    reason: str | None = Field(default=None, max_length=1000)


class ManualAssignRequest(BaseModel):
    expert_id: int


class TriageEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    reason: str
    resolved_at: datetime | None
    resolved_by_id: int | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class MessageCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=10000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    sender_id: int
    body: str
    created_at: datetime


# ---------------------------------------------------------------------------
# Expertise
# ---------------------------------------------------------------------------


class ExpertiseGrant(BaseModel):
    user_id: int
    area_id: int
    tag_id: int | None = None
    level: Literal["primary", "secondary"]


class ExpertiseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    area_id: int
    tag_id: int | None
    level: str
    granted_by_id: int | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------


class ReportCreate(BaseModel):
    content_type: str = Field(..., min_length=1, max_length=50)
    content_id: int
    reason: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=2000)


class ReportFiledResponse(BaseModel):
    """What a reporter sees: no priority, no reputation internals."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    content_type: str
    content_id: int
    reason: str
    status: str
    created_at: datetime


class ReportResponse(BaseModel):
    """Moderator view: priority and corroborations, never trust arithmetic."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    reporter_id: int
    content_type: str
    content_id: int
    owner_id: int
    reason: str
    description: str | None
    status: str
    priority: float
    corroboration_count: int
    auto_suppressed: bool
    moderator_id: int | None
    claimed_at: datetime | None
    moderator_notes: str | None
    resolved_at: datetime | None
    created_at: datetime


class ReportResolveRequest(BaseModel):
    decision: Literal["resolved", "dismissed"]
    notes: str | None = Field(default=None, max_length=2000)


class QueueStatsResponse(BaseModel):
    pending: int
    reviewing: int
    top_priority: float
    suppressed: int


class SuppressionResponse(BaseModel):
    content_type: str
    content_id: int
    suppressed: bool


class WarnRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    report_id: int | None = None


class SuspendRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    duration_days: int | None = Field(default=None, gt=0)
    report_id: int | None = None


class ModerationActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    moderator_id: int
    target_user_id: int
    action: str
    report_id: int | None
    reason: str | None
    created_at: datetime


class SuspensionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    admin_id: int
    reason: str
    expires_at: datetime | None
    lifted_at: datetime | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Reputation audit (admin only)
# ---------------------------------------------------------------------------


class ReputationHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    delta: int
    reason: str
    source_event_id: str
    score_after: int
    content_type: str | None
    content_id: int | None
    moderator_id: int | None
    created_at: datetime


class ReputationAuditResponse(BaseModel):
    user_id: int
    score: int
    trust_level: int
    replayed_score: int
    consistent: bool
    history: list[ReputationHistoryEntry] = Field(default_factory=list)

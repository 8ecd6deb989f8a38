from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from app.utils.clock import to_naive_utc

PROJECT_STATUS_PATTERN = "^(collecting|paused|ready-for-analysis|processing|completed|archived|error)$"
PRIORITY_PATTERN = "^(low|medium|high)$"
SENTIMENT_PATTERN = "^(positive|negative|neutral)$"
ACTION_STATUS_PATTERN = "^(unhandled|in-progress|resolved|dismissed)$"
TASK_STATUS_PATTERN = "^(pending|in-progress|completed)$"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("*")
    @classmethod
    def _timestamps_as_naive_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return to_naive_utc(value)
        return value


class EntityRef(_Payload):
    id: StrictStr = Field(..., min_length=1)


class ProjectCreate(_Payload):
    owner_id: StrictStr | None = Field(default=None, min_length=1, max_length=64)
    name: StrictStr = Field(..., min_length=1, max_length=255)
    description: str | None = None
    status: str = Field(default="collecting", pattern=PROJECT_STATUS_PATTERN)
    priority_level: str | None = Field(default=None, pattern=PRIORITY_PATTERN)
    priority_reason: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class ProjectUpdate(EntityRef):
    name: StrictStr | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: str | None = Field(default=None, pattern=PROJECT_STATUS_PATTERN)
    is_archived: bool | None = None
    is_completed: bool | None = None
    priority_level: str | None = Field(default=None, pattern=PRIORITY_PATTERN)
    priority_reason: str | None = None
    last_analysis_at: datetime | None = None
    last_analyzed_opinion_count: int | None = Field(default=None, ge=0)


class OpinionCreate(_Payload):
    project_id: StrictStr = Field(..., min_length=1)
    content: StrictStr
    sentiment: str | None = Field(default=None, pattern=SENTIMENT_PATTERN)
    topic_id: str | None = None
    submitted_at: datetime | None = None
    is_bookmarked: bool = False
    metadata: dict[str, Any] | None = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content is required and must be a string")
        return value


class OpinionUpdate(EntityRef):
    content: StrictStr | None = Field(default=None, min_length=1)
    sentiment: str | None = Field(default=None, pattern=SENTIMENT_PATTERN)
    topic_id: str | None = None
    is_bookmarked: bool | None = None
    action_status: str | None = Field(default=None, pattern=ACTION_STATUS_PATTERN)
    action_status_reason: str | None = None
    priority_level: str | None = Field(default=None, pattern=PRIORITY_PATTERN)
    priority_reason: str | None = None
    due_date: datetime | None = None
    metadata: dict[str, Any] | None = None


class TaskCreate(_Payload):
    project_id: StrictStr = Field(..., min_length=1)
    title: StrictStr = Field(..., min_length=1, max_length=255)
    description: str | None = None
    status: str = Field(default="pending", pattern=TASK_STATUS_PATTERN)
    due_date: datetime | None = None


class TaskUpdate(EntityRef):
    title: StrictStr | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: str | None = Field(default=None, pattern=TASK_STATUS_PATTERN)
    due_date: datetime | None = None


class IngestResult(BaseModel):
    success_count: int
    total_count: int
    errors: list[str] = Field(default_factory=list)


class LimitCheckResult(BaseModel):
    allowed: bool
    message: str | None = None
    remaining: dict[str, int] | None = None
    reset_date: dict[str, datetime] | None = None
    current_usage: int | None = None
    limit: int | None = None
    plan: str | None = None
    limit_kind: str | None = None

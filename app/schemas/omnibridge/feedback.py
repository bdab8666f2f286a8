from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.omnibridge.enums import FeedbackRating, FeedbackSeverity


class FeedbackCreate(BaseModel):
    execution_log_id: UUID
    rating: FeedbackRating | None = None
    severity: FeedbackSeverity | None = None
    category: str | None = Field(default=None, max_length=80)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    corrective_action: str | None = None
    annotated_by: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _require_content(self):
        if self.rating is None and not self.notes and self.severity is None:
            raise ValueError("Provide at least a rating, a severity or notes")
        return self


class FeedbackUpdate(BaseModel):
    rating: FeedbackRating | None = None
    severity: FeedbackSeverity | None = None
    category: str | None = Field(default=None, max_length=80)
    tags: list[str] | None = None
    notes: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    corrective_action: str | None = None


class FeedbackResolve(BaseModel):
    resolved_by: str | None = Field(default=None, max_length=200)
    corrective_action: str | None = None


class FeedbackRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    execution_log_id: UUID
    rule_id: UUID | None = None
    message_id: UUID | None = None
    rating: FeedbackRating | None = None
    severity: FeedbackSeverity | None = None
    category: str | None = None
    tags: list[str] | None = None
    notes: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    corrective_action: str | None = None
    annotated_by: str | None = None
    resolved: bool
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime
    updated_at: datetime


class FeedbackStats(BaseModel):
    total: int
    by_rating: dict[str, int]
    by_severity: dict[str, int]
    resolved: int
    unresolved: int
    average_score: float | None = None

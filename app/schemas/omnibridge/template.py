from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ResponseTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    category: str | None = Field(default=None, max_length=80)
    subject: str | None = Field(default=None, max_length=500)
    body: str = Field(min_length=1)
    channel_bodies: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True


class ResponseTemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    category: str | None = Field(default=None, max_length=80)
    subject: str | None = Field(default=None, max_length=500)
    body: str | None = Field(default=None, min_length=1)
    channel_bodies: dict[str, str] | None = None
    is_active: bool | None = None


class ResponseTemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    category: str | None = None
    subject: str | None = None
    body: str
    channel_bodies: dict[str, str] | None = None
    is_active: bool
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime


class TemplatePreviewRequest(BaseModel):
    channel_type: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


class TemplatePreview(BaseModel):
    subject: str | None = None
    body: str

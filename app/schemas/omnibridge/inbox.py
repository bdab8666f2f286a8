from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.omnibridge.enums import ChannelType, MessageDirection, MessagePriority


class InboxMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    channel_id: UUID
    channel_type: ChannelType
    direction: MessageDirection
    external_id: str | None = None
    thread_id: str | None = None
    from_address: str | None = None
    from_name: str | None = None
    to_address: str | None = None
    subject: str | None = None
    body_text: str | None = None
    attachments: list[dict[str, Any]] | None = None
    priority: MessagePriority
    tags: list[str] | None = None
    is_read: bool
    is_processed: bool
    is_archived: bool
    assigned_to: str | None = None
    processing_rule_id: UUID | None = None
    ticket_id: UUID | None = None
    response_deadline: datetime | None = None
    escalated_at: datetime | None = None
    received_at: datetime
    processed_at: datetime | None = None


class UnreadCount(BaseModel):
    unread: int

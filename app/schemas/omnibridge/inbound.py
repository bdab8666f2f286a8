from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.omnibridge.enums import ChannelType, MessagePriority


class InboundMessage(BaseModel):
    """Channel independent form of a message received from a provider."""

    tenant_id: UUID
    channel_id: UUID
    channel_type: ChannelType
    external_id: str | None = Field(default=None, max_length=500)
    thread_id: str | None = Field(default=None, max_length=200)
    from_address: str = Field(min_length=1, max_length=255)
    from_name: str | None = Field(default=None, max_length=255)
    to_address: str | None = Field(default=None, max_length=255)
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    received_at: datetime | None = None
    priority: MessagePriority | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.body_text or self.body_html or ""


class EmailWebhookPayload(BaseModel):
    """Email pushed over HTTP by a relay instead of fetched over IMAP."""

    from_address: str = Field(min_length=1, max_length=255)
    from_name: str | None = Field(default=None, max_length=255)
    to_address: str | None = Field(default=None, max_length=255)
    message_id: str | None = Field(default=None, max_length=500)
    in_reply_to: str | None = None
    references: str | None = None
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    received_at: datetime | None = None


class ChatInboundPayload(BaseModel):
    session_id: str = Field(min_length=1, max_length=120)
    text: str = Field(min_length=1, max_length=10000)
    visitor_name: str | None = Field(default=None, max_length=160)
    visitor_email: str | None = Field(default=None, max_length=255)
    client_message_id: str | None = Field(default=None, max_length=120)
    page_url: str | None = Field(default=None, max_length=1000)


class ChatMessageRead(BaseModel):
    id: UUID
    direction: str
    body: str
    sender_name: str | None = None
    created_at: datetime


class InboundResultRead(BaseModel):
    status: str
    message_id: UUID | None = None
    duplicate: bool = False
    rules_executed: int = 0
    reason: str | None = None

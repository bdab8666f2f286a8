from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.omnibridge.enums import (
    ChannelType,
    NotificationChannel,
    NotificationStatus,
    WebhookDeliveryStatus,
)


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    channel: NotificationChannel
    recipient: str
    subject: str | None = None
    body: str | None = None
    status: NotificationStatus
    attempts: int = 0
    last_error: str | None = None
    sent_at: datetime | None = None
    read_at: datetime | None = None
    source_rule_id: UUID | None = None
    message_id: UUID | None = None
    created_at: datetime


class WebhookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    rule_id: UUID | None = None
    message_id: UUID | None = None
    url: str
    event_type: str
    status: WebhookDeliveryStatus
    attempt_count: int = 0
    max_attempts: int
    next_attempt_at: datetime | None = None
    response_status: int | None = None
    error: str | None = None
    attempt_log: list[dict[str, Any]] | None = None
    delivered_at: datetime | None = None
    created_at: datetime


class OutboxMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    channel_id: UUID
    channel_type: ChannelType
    recipient: str
    subject: str | None = None
    body: str
    status: str
    attempts: int = 0
    last_error: str | None = None
    sent_at: datetime | None = None
    created_at: datetime


class AnalyticsSummary(BaseModel):
    period_start: datetime
    period_end: datetime
    inbound_by_channel: dict[str, int]
    processed: int
    pending: int
    executions_by_outcome: dict[str, int]
    notifications_by_status: dict[str, int]
    webhooks_by_status: dict[str, int]
    outbox_by_status: dict[str, int]
    tickets_created: int

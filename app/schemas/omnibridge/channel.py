from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.omnibridge.enums import ChannelHealth, ChannelType

_SECRET_KEYS = {"password", "bot_token", "webhook_secret", "auth_token", "api_key"}


def redact_config(config: dict | None) -> dict:
    if not isinstance(config, dict):
        return {}
    redacted: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            redacted[key] = redact_config(value)
        elif key in _SECRET_KEYS and value:
            redacted[key] = "********"
        else:
            redacted[key] = value
    return redacted


class ChannelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    channel_type: ChannelType
    provider: str | None = Field(default=None, max_length=60)
    config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    is_monitoring: bool = True


class ChannelUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    provider: str | None = Field(default=None, max_length=60)
    config: dict[str, Any] | None = None
    is_active: bool | None = None
    is_monitoring: bool | None = None


class ChannelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    channel_type: ChannelType
    provider: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    is_monitoring: bool
    health_status: ChannelHealth
    error_count: int = 0
    last_error: str | None = None
    last_health_check: datetime | None = None
    last_sync_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_channel(cls, channel) -> ChannelRead:
        read = cls.model_validate(channel, from_attributes=True)
        return read.model_copy(update={"config": redact_config(channel.config)})


class ChannelPollResult(BaseModel):
    channel_id: UUID
    processed: int
    skipped: int = 0
    duplicates: int = 0


class TelegramWebhookRegister(BaseModel):
    url: str = Field(min_length=1, max_length=1000)

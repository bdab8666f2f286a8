from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.automation_rule import AutomationLogOutcome, AutomationRuleStatus, TriggerLogic


class AutomationTriggerType(enum.Enum):
    keyword = "keyword"
    time = "time"
    channel = "channel"
    priority = "priority"
    sender = "sender"
    content_pattern = "content_pattern"
    message_received = "message_received"
    has_attachment = "has_attachment"


class AutomationActionType(enum.Enum):
    reply = "reply"
    forward = "forward"
    create_ticket = "create_ticket"
    notify = "notify"
    tag = "tag"
    assign = "assign"
    escalate = "escalate"
    webhook = "webhook"
    set_priority = "set_priority"
    archive = "archive"
    mark_read = "mark_read"


# Names used by older rule payloads and the template catalogue.
TRIGGER_ALIASES: dict[str, str] = {
    "keyword_match": "keyword",
    "time_based": "time",
    "business_hours": "time",
    "channel_type": "channel",
    "priority_based": "priority",
    "sender_pattern": "sender",
    "content": "content_pattern",
    "new_message": "message_received",
}

ACTION_ALIASES: dict[str, str] = {
    "auto_reply": "reply",
    "send_auto_reply": "reply",
    "forward_message": "forward",
    "send_notification": "notify",
    "notify_team": "notify",
    "add_tag": "tag",
    "add_tags": "tag",
    "assign_user": "assign",
    "assign_agent": "assign",
    "mark_priority": "set_priority",
}


def canonical_trigger_type(value: str) -> str:
    value = (value or "").strip()
    return TRIGGER_ALIASES.get(value, value)


def canonical_action_type(value: str) -> str:
    value = (value or "").strip()
    return ACTION_ALIASES.get(value, value)


class TriggerItem(BaseModel):
    trigger_type: AutomationTriggerType
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("trigger_type", mode="before")
    @classmethod
    def _resolve_alias(cls, value):
        if isinstance(value, str):
            return canonical_trigger_type(value)
        return value


class ConditionItem(BaseModel):
    field: str = Field(min_length=1)
    op: str = Field(min_length=1)
    value: Any = None


class ActionItem(BaseModel):
    action_type: AutomationActionType
    params: dict[str, Any] = Field(default_factory=dict)
    order: int = 0

    @field_validator("action_type", mode="before")
    @classmethod
    def _resolve_alias(cls, value):
        if isinstance(value, str):
            return canonical_action_type(value)
        return value


class AutomationRuleBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    triggers: list[TriggerItem] = Field(default_factory=list)
    trigger_logic: TriggerLogic = TriggerLogic.any
    conditions: list[ConditionItem] = Field(default_factory=list)
    actions: list[ActionItem] = Field(min_length=1)
    priority: int = Field(default=0, ge=0)
    stop_after_match: bool = False
    cooldown_seconds: int = Field(default=0, ge=0)


class AutomationRuleCreate(AutomationRuleBase):
    status: AutomationRuleStatus = AutomationRuleStatus.active


class AutomationRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    triggers: list[TriggerItem] | None = None
    trigger_logic: TriggerLogic | None = None
    conditions: list[ConditionItem] | None = None
    actions: list[ActionItem] | None = Field(default=None, min_length=1)
    priority: int | None = Field(default=None, ge=0)
    stop_after_match: bool | None = None
    cooldown_seconds: int | None = Field(default=None, ge=0)
    status: AutomationRuleStatus | None = None
    is_active: bool | None = None


class AutomationRuleStatusUpdate(BaseModel):
    status: AutomationRuleStatus


class AutomationRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    tenant_id: UUID
    name: str
    description: str | None = None
    triggers: list[dict[str, Any]] | None = None
    trigger_logic: TriggerLogic
    conditions: list[dict[str, Any]] | None = None
    actions: list[dict[str, Any]] | None = None
    priority: int = 0
    stop_after_match: bool = False
    cooldown_seconds: int = 0
    status: AutomationRuleStatus
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_triggered_at: datetime | None = None
    created_by: str | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class AutomationRuleLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    tenant_id: UUID
    rule_id: UUID
    message_id: UUID | None = None
    channel_type: str | None = None
    outcome: AutomationLogOutcome
    matched_triggers: list[str] | None = None
    actions_executed: list[dict[str, Any]] | None = None
    duration_ms: int | None = None
    error: str | None = None
    created_at: datetime


class RuleTemplateRead(BaseModel):
    key: str
    name: str
    description: str
    category: str
    rule: dict[str, Any]


class RuleTestRequest(BaseModel):
    """Sample message used for a dry run of a rule."""

    channel_type: str = "email"
    from_address: str | None = None
    from_name: str | None = None
    subject: str | None = None
    body_text: str | None = None
    priority: str | None = None
    received_at: datetime | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RuleTestResult(BaseModel):
    matched: bool
    matched_triggers: list[str]
    conditions_passed: bool
    actions: list[dict[str, Any]]

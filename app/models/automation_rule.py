import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class AutomationRuleStatus(enum.Enum):
    active = "active"
    paused = "paused"
    archived = "archived"


class AutomationLogOutcome(enum.Enum):
    success = "success"
    partial_failure = "partial_failure"
    failure = "failure"
    skipped = "skipped"


class TriggerLogic(enum.Enum):
    any = "any"
    all = "all"


class AutomationRule(Base):
    __tablename__ = "automation_rules"
    __table_args__ = (
        Index(
            "ix_automation_rules_tenant_active",
            "tenant_id",
            "status",
            "is_active",
            "priority",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    triggers: Mapped[list | None] = mapped_column(JSONB)
    trigger_logic: Mapped[TriggerLogic] = mapped_column(Enum(TriggerLogic), default=TriggerLogic.any)
    conditions: Mapped[list | None] = mapped_column(JSONB)
    actions: Mapped[list | None] = mapped_column(JSONB)
    status: Mapped[AutomationRuleStatus] = mapped_column(
        Enum(AutomationRuleStatus), default=AutomationRuleStatus.active
    )
    priority: Mapped[int] = mapped_column(Integer, default=0)
    stop_after_match: Mapped[bool] = mapped_column(Boolean, default=False)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, default=0)
    execution_count: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[str | None] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    logs = relationship("AutomationRuleLog", back_populates="rule")


class AutomationRuleLog(Base):
    """Execution log: one row per rule that matched a message."""

    __tablename__ = "automation_rule_logs"
    __table_args__ = (
        Index("ix_automation_rule_logs_rule_id", "rule_id"),
        Index("ix_automation_rule_logs_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    rule_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("automation_rules.id"), nullable=False)
    message_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("omnibridge_inbox.id"))
    channel_type: Mapped[str | None] = mapped_column(String(40))
    outcome: Mapped[AutomationLogOutcome] = mapped_column(Enum(AutomationLogOutcome), nullable=False)
    matched_triggers: Mapped[list | None] = mapped_column(JSONB)
    actions_executed: Mapped[list | None] = mapped_column(JSONB)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    rule = relationship("AutomationRule", back_populates="logs")

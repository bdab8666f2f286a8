import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class WebhookDeadLetter(Base):
    """Inbound provider payload that kept failing after every retry."""

    __tablename__ = "omnibridge_webhook_dead_letters"
    __table_args__ = (Index("ix_omnibridge_dead_letters_channel_created", "channel_type", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    channel_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    channel_type: Mapped[str] = mapped_column(String(40), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(String(64))
    external_id: Mapped[str | None] = mapped_column(String(200))
    raw_payload: Mapped[dict | None] = mapped_column(JSON)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

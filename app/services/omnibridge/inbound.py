"""Inbound routing core.

Every channel funnels into ``receive_inbound_message``: dedupe, persist,
then run tenant automation synchronously before returning.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType, MessageDirection
from app.models.omnibridge.inbox import InboxMessage
from app.schemas.omnibridge.inbound import InboundMessage
from app.services.common import coerce_uuid
from app.services.omnibridge.automation import RuleExecution, automation_handler
from app.services.omnibridge.channels import get_adapter
from app.services.omnibridge.context import get_omnibridge_logger, set_tenant_id, set_trace_id
from app.services.omnibridge.dedup import build_inbound_dedupe_key, find_duplicate_inbound_message
from app.services.omnibridge.errors import OmniBridgeNotFoundError, OmniBridgeValidationError
from app.services.omnibridge.normalizers import _normalize_external_id, detect_priority, normalize_sender_address
from app.services.omnibridge.observability import INBOUND_MESSAGES, INBOUND_PROCESSING_TIME
from app.telemetry import get_tracer

logger = get_omnibridge_logger(__name__)


@dataclass
class InboundResult:
    status: str  # processed, duplicate, skipped
    message: InboxMessage | None = None
    executions: list[RuleExecution] = field(default_factory=list)
    reason: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.status == "duplicate"


def _resolve_channel(db: Session, inbound: InboundMessage) -> Channel:
    channel = db.get(Channel, coerce_uuid(inbound.channel_id))
    if channel is None or channel.tenant_id != coerce_uuid(inbound.tenant_id):
        raise OmniBridgeNotFoundError(code="channel_not_found", detail="Channel not found")
    if channel.channel_type != inbound.channel_type:
        raise OmniBridgeValidationError(
            code="channel_type_mismatch",
            detail=f"Channel {channel.id} is {channel.channel_type.value}, not {inbound.channel_type.value}",
        )
    return channel


def receive_inbound_message(db: Session, inbound: InboundMessage) -> InboundResult:
    set_tenant_id(inbound.tenant_id)
    trace_id = set_trace_id()
    channel_label = inbound.channel_type.value
    started = time.monotonic()

    with get_tracer().start_as_current_span("omnibridge.inbound") as span:
        span.set_attribute("omnibridge.channel_type", channel_label)
        span.set_attribute("omnibridge.tenant_id", str(inbound.tenant_id))

        channel = _resolve_channel(db, inbound)
        if not channel.is_active:
            INBOUND_MESSAGES.labels(channel_type=channel_label, status="skipped").inc()
            logger.info("inbound_message_skipped reason=channel_inactive channel_id=%s", channel.id)
            return InboundResult(status="skipped", reason="channel_inactive")

        sender = normalize_sender_address(inbound.channel_type, inbound.from_address)
        if not sender:
            raise OmniBridgeValidationError(code="sender_missing", detail="Inbound message has no sender address")
        if sender in get_adapter(inbound.channel_type).self_addresses(channel):
            INBOUND_MESSAGES.labels(channel_type=channel_label, status="skipped").inc()
            logger.info("inbound_message_skipped reason=self_message channel_id=%s", channel.id)
            return InboundResult(status="skipped", reason="self_message")

        external_id = _normalize_external_id(inbound.external_id)
        received_at = inbound.received_at or datetime.now(UTC)
        dedupe_key = build_inbound_dedupe_key(
            inbound.channel_type,
            channel.id,
            sender,
            inbound.subject,
            inbound.content,
            received_at,
            external_id=external_id,
        )
        existing = find_duplicate_inbound_message(db, channel.tenant_id, inbound.channel_type, dedupe_key)
        if existing is not None and not existing.is_processed:
            # Stored by an earlier delivery whose automation failed; finish it now.
            logger.info("inbound_message_resumed message_id=%s dedupe_key=%s", existing.id, dedupe_key)
            return _run_automation(db, existing, channel_label, span, started)
        if existing is not None:
            INBOUND_MESSAGES.labels(channel_type=channel_label, status="duplicate").inc()
            logger.info("inbound_message_duplicate message_id=%s dedupe_key=%s", existing.id, dedupe_key)
            return InboundResult(status="duplicate", message=existing, reason="duplicate")

        metadata = dict(inbound.metadata or {})
        metadata.setdefault("trace_id", trace_id)
        message = InboxMessage(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=inbound.channel_type,
            direction=MessageDirection.inbound,
            external_id=external_id,
            dedupe_key=dedupe_key,
            thread_id=inbound.thread_id,
            from_address=sender,
            from_name=inbound.from_name,
            to_address=inbound.to_address,
            subject=inbound.subject,
            body_text=inbound.body_text,
            body_html=inbound.body_html,
            attachments=inbound.attachments or [],
            priority=inbound.priority or detect_priority(inbound.subject, inbound.content),
            tags=[],
            received_at=received_at,
            metadata_=metadata,
        )
        db.add(message)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same message won the insert.
            db.rollback()
            existing = find_duplicate_inbound_message(db, channel.tenant_id, inbound.channel_type, dedupe_key)
            INBOUND_MESSAGES.labels(channel_type=channel_label, status="duplicate").inc()
            return InboundResult(status="duplicate", message=existing, reason="duplicate")
        db.refresh(message)
        logger.info(
            "inbound_message_received message_id=%s channel=%s sender=%s priority=%s",
            message.id,
            channel_label,
            sender,
            message.priority.value,
        )

        return _run_automation(db, message, channel_label, span, started)


def _run_automation(db: Session, message: InboxMessage, channel_label: str, span, started: float) -> InboundResult:
    try:
        executions = automation_handler.handle(db, message)
    except Exception:
        INBOUND_MESSAGES.labels(channel_type=channel_label, status="error").inc()
        logger.exception("inbound_automation_failed message_id=%s", message.id)
        raise

    message.is_processed = True
    message.processed_at = datetime.now(UTC)
    db.commit()
    db.refresh(message)

    span.set_attribute("omnibridge.rules_executed", len(executions))
    INBOUND_MESSAGES.labels(channel_type=channel_label, status="processed").inc()
    INBOUND_PROCESSING_TIME.labels(channel_type=channel_label).observe(time.monotonic() - started)
    logger.info("inbound_message_processed message_id=%s rules_executed=%s", message.id, len(executions))
    return InboundResult(status="processed", message=message, executions=executions)


def process_provider_payload(db: Session, channel: Channel, payload) -> InboundResult:
    """Normalize a raw provider payload with the channel's adapter and route it."""
    inbound = get_adapter(channel.channel_type).normalize(channel, payload)
    if inbound is None:
        INBOUND_MESSAGES.labels(channel_type=channel.channel_type.value, status="skipped").inc()
        logger.info("inbound_payload_ignored channel_id=%s", channel.id)
        return InboundResult(status="skipped", reason="no_message")
    return receive_inbound_message(db, inbound)


def get_channel_for_webhook(db: Session, channel_id, channel_type: ChannelType) -> Channel:
    """Channel lookup for provider callbacks, which carry no tenant header."""
    channel = db.get(Channel, coerce_uuid(channel_id))
    if channel is None or channel.channel_type != channel_type:
        raise OmniBridgeNotFoundError(code="channel_not_found", detail="Channel not found")
    return channel

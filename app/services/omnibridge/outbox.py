"""Outbox queue for automated replies and forwards."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.outbox import OutboxMessage
from app.services.common import as_utc, coerce_uuid
from app.services.omnibridge.channels import OutboundMessage, get_adapter
from app.services.omnibridge.circuit_breaker import CircuitOpenError, get_breaker
from app.services.omnibridge.dispatch import SEND_OUTBOX_TASK, enqueue_after_commit
from app.services.omnibridge.errors import PermanentOutboundError, TransientOutboundError
from app.services.omnibridge.observability import OUTBOUND_DELIVERIES

logger = get_logger(__name__)

STATUS_QUEUED = "queued"
STATUS_SENDING = "sending"
STATUS_RETRYING = "retrying"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


def _now() -> datetime:
    return datetime.now(UTC)


def compute_backoff_seconds(attempts: int, base: float = 5.0, max_backoff: float = 300.0) -> float:
    """Exponential backoff with up to 25% jitter."""
    backoff = min(base * (2 ** max(attempts - 1, 0)), max_backoff)
    jitter = backoff * (secrets.randbelow(2500) / 10000)
    return backoff + jitter


def build_idempotency_key(rule_id, message_id, action_index: int, suffix: str | None = None) -> str:
    key = f"rule:{rule_id}:msg:{message_id}:action:{action_index}"
    if suffix:
        key = f"{key}:{suffix}"
    return key[:128]


def _find_by_key(db: Session, idempotency_key: str) -> OutboxMessage | None:
    return db.query(OutboxMessage).filter(OutboxMessage.idempotency_key == idempotency_key).first()


def enqueue_outbound_message(
    db: Session,
    *,
    channel: Channel,
    recipient: str,
    body: str,
    subject: str | None = None,
    in_reply_to_id=None,
    source_rule_id=None,
    options: dict | None = None,
    idempotency_key: str | None = None,
) -> tuple[OutboxMessage, bool]:
    """Queue a message for ``channel``; returns (row, created).

    The caller owns the transaction. The send task is queued once it commits.
    """
    if idempotency_key:
        idempotency_key = idempotency_key.strip() or None
    if idempotency_key:
        existing = _find_by_key(db, idempotency_key)
        if existing is not None:
            return existing, False

    outbox = OutboxMessage(
        tenant_id=channel.tenant_id,
        channel_id=channel.id,
        channel_type=channel.channel_type,
        recipient=recipient,
        subject=subject,
        body=body,
        in_reply_to_id=coerce_uuid(in_reply_to_id) if in_reply_to_id else None,
        source_rule_id=coerce_uuid(source_rule_id) if source_rule_id else None,
        options=options or {},
        status=STATUS_QUEUED,
        attempts=0,
        next_attempt_at=_now(),
        idempotency_key=idempotency_key,
    )
    db.add(outbox)
    db.flush()
    enqueue_after_commit(db, SEND_OUTBOX_TASK, outbox.id)
    logger.info(
        "outbox_enqueued outbox_id=%s channel=%s recipient=%s",
        outbox.id,
        channel.channel_type.value,
        recipient,
    )
    return outbox, True


def _mark_retry(db: Session, outbox: OutboxMessage, error: str) -> None:
    if (outbox.attempts or 0) >= settings.outbox_max_attempts:
        outbox.status = STATUS_FAILED
        outbox.next_attempt_at = None
        OUTBOUND_DELIVERIES.labels(kind="outbox", status="failed").inc()
    else:
        outbox.status = STATUS_RETRYING
        outbox.next_attempt_at = _now() + timedelta(seconds=compute_backoff_seconds(outbox.attempts or 1))
        OUTBOUND_DELIVERIES.labels(kind="outbox", status="retrying").inc()
    outbox.last_error = error
    db.commit()
    db.refresh(outbox)


def process_outbox_item(db: Session, outbox_id: str) -> OutboxMessage | None:
    """Attempt one send.

    Transient failures reschedule the item until ``outbox_max_attempts``;
    permanent failures mark it failed. Never raises for provider errors.
    """
    outbox = db.get(OutboxMessage, coerce_uuid(outbox_id))
    if outbox is None:
        logger.info("outbox_item_missing outbox_id=%s", outbox_id)
        return None
    if outbox.status in {STATUS_SENT, STATUS_FAILED}:
        return outbox
    next_attempt_at = as_utc(outbox.next_attempt_at)
    if next_attempt_at and next_attempt_at > _now():
        return outbox

    channel = db.get(Channel, outbox.channel_id)
    if channel is None or not channel.is_active:
        outbox.status = STATUS_FAILED
        outbox.last_error = "Channel missing or inactive"
        outbox.next_attempt_at = None
        db.commit()
        OUTBOUND_DELIVERIES.labels(kind="outbox", status="failed").inc()
        return outbox
    if (outbox.attempts or 0) >= settings.outbox_max_attempts:
        # Reclaimed after a crash mid-send with no attempts left.
        outbox.status = STATUS_FAILED
        outbox.last_error = outbox.last_error or "Max attempts exceeded"
        outbox.next_attempt_at = None
        db.commit()
        OUTBOUND_DELIVERIES.labels(kind="outbox", status="failed").inc()
        logger.warning("outbox_attempts_exhausted outbox_id=%s attempts=%s", outbox.id, outbox.attempts)
        return outbox

    outbox.status = STATUS_SENDING
    outbox.attempts = (outbox.attempts or 0) + 1
    outbox.last_attempt_at = _now()
    db.commit()
    db.refresh(outbox)

    adapter = get_adapter(outbox.channel_type)
    outbound = OutboundMessage(
        recipient=outbox.recipient,
        body=outbox.body,
        subject=outbox.subject,
        options=dict(outbox.options or {}),
    )
    breaker = get_breaker(f"channel:{outbox.channel_type.value}")
    try:
        result = breaker.call(
            adapter.send,
            db,
            channel,
            outbound,
            counts_as_failure=lambda exc: isinstance(exc, TransientOutboundError),
        )
    except (TransientOutboundError, CircuitOpenError) as exc:
        db.rollback()
        logger.warning("outbox_send_retry outbox_id=%s attempts=%s error=%s", outbox.id, outbox.attempts, exc)
        _mark_retry(db, outbox, str(exc))
        return outbox
    except PermanentOutboundError as exc:
        db.rollback()
        logger.warning("outbox_send_failed outbox_id=%s error=%s", outbox.id, exc)
        outbox.status = STATUS_FAILED
        outbox.last_error = str(exc)
        outbox.next_attempt_at = None
        db.commit()
        db.refresh(outbox)
        OUTBOUND_DELIVERIES.labels(kind="outbox", status="failed").inc()
        return outbox

    outbox.status = STATUS_SENT
    outbox.provider_message_id = result.provider_message_id
    outbox.sent_at = _now()
    outbox.last_error = None
    outbox.next_attempt_at = None
    db.commit()
    db.refresh(outbox)
    OUTBOUND_DELIVERIES.labels(kind="outbox", status="sent").inc()
    logger.info("outbox_sent outbox_id=%s provider_message_id=%s", outbox.id, outbox.provider_message_id)
    return outbox


def list_due_outbox_ids(db: Session, *, limit: int = 50) -> list[str]:
    now = _now()
    stuck_before = now - timedelta(minutes=10)
    items = (
        db.query(OutboxMessage)
        .filter(
            (OutboxMessage.status.in_([STATUS_QUEUED, STATUS_RETRYING]))
            & ((OutboxMessage.next_attempt_at.is_(None)) | (OutboxMessage.next_attempt_at <= now))
            | ((OutboxMessage.status == STATUS_SENDING) & (OutboxMessage.last_attempt_at <= stuck_before))
        )
        .order_by(OutboxMessage.created_at.asc())
        .limit(limit)
        .all()
    )
    return [str(item.id) for item in items]

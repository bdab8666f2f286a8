"""Notification fan-out: in-app, email and SMS."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.omnibridge.enums import NotificationChannel, NotificationStatus
from app.models.omnibridge.notification import Notification
from app.services import email as email_service
from app.services.common import apply_pagination, as_utc, coerce_uuid, validate_enum
from app.services.omnibridge.dispatch import DELIVER_NOTIFICATION_TASK, enqueue_after_commit
from app.services.omnibridge.errors import PermanentOutboundError, TransientOutboundError
from app.services.omnibridge.observability import OUTBOUND_DELIVERIES
from app.services.omnibridge.outbox import compute_backoff_seconds
from app.services.response import ListResponseMixin

logger = get_logger(__name__)

# "sending" rows older than this are assumed to belong to a crashed worker.
SENDING_TIMEOUT_MINUTES = 5


def _now() -> datetime:
    return datetime.now(UTC)


def queue_notification(
    db: Session,
    tenant_id,
    channel: NotificationChannel | str,
    recipient: str,
    subject: str | None,
    body: str | None,
    *,
    source_rule_id=None,
    message_id=None,
) -> Notification:
    """Add a notification to the caller's transaction.

    In-app notifications are delivered as soon as they are stored; the others
    are handed to the delivery task after commit.
    """
    channel_value = validate_enum(channel, NotificationChannel, "channel")
    notification = Notification(
        tenant_id=coerce_uuid(tenant_id),
        channel=channel_value,
        recipient=recipient.strip(),
        subject=subject,
        body=body,
        source_rule_id=coerce_uuid(source_rule_id) if source_rule_id else None,
        message_id=coerce_uuid(message_id) if message_id else None,
        next_attempt_at=_now(),
    )
    if channel_value == NotificationChannel.in_app:
        notification.status = NotificationStatus.delivered
        notification.sent_at = _now()
        notification.next_attempt_at = None
    db.add(notification)
    db.flush()
    if channel_value != NotificationChannel.in_app:
        enqueue_after_commit(db, DELIVER_NOTIFICATION_TASK, notification.id)
    return notification


def _send_sms(to_number: str, body: str) -> str | None:
    """Send an SMS through the Twilio Messages API; returns the message SID."""
    if not settings.twilio_account_sid or not settings.twilio_auth_token or not settings.twilio_from_number:
        raise PermanentOutboundError("Twilio credentials are not configured")
    url = f"{settings.twilio_api_base_url.rstrip('/')}/Accounts/{settings.twilio_account_sid}/Messages.json"
    try:
        response = httpx.post(
            url,
            data={"To": to_number, "From": settings.twilio_from_number, "Body": body[:1600]},
            auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            timeout=settings.webhook_timeout,
        )
    except httpx.TransportError as exc:
        raise TransientOutboundError(f"Twilio transport error: {exc}") from exc
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientOutboundError(f"Twilio {response.status_code}: {response.text[:200]}")
    if response.status_code >= 400:
        raise PermanentOutboundError(f"Twilio {response.status_code}: {response.text[:200]}")
    return response.json().get("sid")


def _send(notification: Notification) -> None:
    if notification.channel == NotificationChannel.email:
        email_service.send_email_with_config(
            email_service.default_smtp_config(),
            notification.recipient,
            notification.subject or "Notification",
            notification.body or "",
        )
    elif notification.channel == NotificationChannel.sms:
        text = notification.body or notification.subject or ""
        if notification.subject and notification.body:
            text = f"{notification.subject}: {notification.body}"
        _send_sms(notification.recipient, text)


def deliver_notification(db: Session, notification_id) -> Notification | None:
    notification = db.get(Notification, coerce_uuid(notification_id))
    if notification is None:
        logger.info("notification_missing notification_id=%s", notification_id)
        return None
    if notification.status in (NotificationStatus.delivered, NotificationStatus.failed):
        return notification
    if (notification.attempts or 0) >= settings.notification_max_attempts:
        # Reclaimed after a crash mid-send with no attempts left.
        notification.status = NotificationStatus.failed
        notification.next_attempt_at = None
        notification.last_error = notification.last_error or "Max attempts exceeded"
        db.commit()
        OUTBOUND_DELIVERIES.labels(kind="notification", status="failed").inc()
        logger.warning(
            "notification_attempts_exhausted notification_id=%s attempts=%s", notification.id, notification.attempts
        )
        return notification

    notification.status = NotificationStatus.sending
    notification.attempts = (notification.attempts or 0) + 1
    db.commit()

    try:
        _send(notification)
    except (TransientOutboundError, PermanentOutboundError) as exc:
        notification.last_error = str(exc)
        permanent = isinstance(exc, PermanentOutboundError)
        if permanent or notification.attempts >= settings.notification_max_attempts:
            notification.status = NotificationStatus.failed
            notification.next_attempt_at = None
            OUTBOUND_DELIVERIES.labels(kind="notification", status="failed").inc()
        else:
            notification.status = NotificationStatus.queued
            notification.next_attempt_at = _now() + timedelta(
                seconds=compute_backoff_seconds(notification.attempts, base=30.0, max_backoff=1800.0)
            )
            OUTBOUND_DELIVERIES.labels(kind="notification", status="retrying").inc()
        logger.warning(
            "notification_delivery_failed notification_id=%s channel=%s attempts=%s error=%s",
            notification.id,
            notification.channel.value,
            notification.attempts,
            exc,
        )
        db.commit()
        return notification

    notification.status = NotificationStatus.delivered
    notification.sent_at = _now()
    notification.last_error = None
    notification.next_attempt_at = None
    db.commit()
    OUTBOUND_DELIVERIES.labels(kind="notification", status="sent").inc()
    logger.info("notification_delivered notification_id=%s channel=%s", notification.id, notification.channel.value)
    return notification


def deliver_due_notifications(db: Session, batch_size: int | None = None) -> int:
    """Deliver queued notifications that are due, plus stuck ``sending`` ones."""
    now = _now()
    stuck_threshold = now - timedelta(minutes=SENDING_TIMEOUT_MINUTES)
    notifications = (
        db.query(Notification)
        .filter(Notification.channel != NotificationChannel.in_app)
        .filter(
            or_(
                (Notification.status == NotificationStatus.queued)
                & ((Notification.next_attempt_at.is_(None)) | (Notification.next_attempt_at <= now)),
                (Notification.status == NotificationStatus.sending) & (Notification.updated_at < stuck_threshold),
            )
        )
        .order_by(Notification.created_at.asc())
        .limit(batch_size or settings.notification_batch_size)
        .all()
    )
    delivered = 0
    for notification in notifications:
        result = deliver_notification(db, notification.id)
        if result is not None and result.status == NotificationStatus.delivered:
            delivered += 1
    return delivered


class NotificationsManager(ListResponseMixin):
    """In-app inbox reads for a recipient."""

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        recipient: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = (
            db.query(Notification)
            .filter(Notification.tenant_id == coerce_uuid(tenant_id))
            .filter(Notification.channel == NotificationChannel.in_app)
            .filter(Notification.recipient == recipient.strip())
        )
        if unread_only:
            query = query.filter(Notification.read_at.is_(None))
        query = query.order_by(Notification.created_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get(db: Session, tenant_id, notification_id) -> Notification:
        notification = db.get(Notification, coerce_uuid(notification_id))
        if not notification or notification.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Notification not found")
        return notification

    @staticmethod
    def mark_read(db: Session, tenant_id, notification_id) -> Notification:
        notification = NotificationsManager.get(db, tenant_id, notification_id)
        if as_utc(notification.read_at) is None:
            notification.read_at = _now()
            db.commit()
            db.refresh(notification)
        return notification


notifications = NotificationsManager()

"""Outbound webhook deliveries requested by automation rules.

Every attempt is appended to ``attempt_log``; the delivery row is the
audit trail for the call.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.omnibridge.enums import WebhookDeliveryStatus
from app.models.omnibridge.webhook import WebhookDelivery
from app.services.common import coerce_uuid
from app.services.omnibridge.dispatch import DELIVER_WEBHOOK_TASK, enqueue_after_commit
from app.services.omnibridge.observability import OUTBOUND_DELIVERIES

logger = get_logger(__name__)

# 1min, 2min, 4min, 8min, 16min, then hourly.
RETRYABLE_STATUS_CODES = {408, 429}
ALLOWED_METHODS = {"POST", "PUT", "PATCH"}

SIGNATURE_HEADER = "X-OmniBridge-Signature-256"
EVENT_HEADER = "X-OmniBridge-Event"
DELIVERY_HEADER = "X-OmniBridge-Delivery-Id"


def _now() -> datetime:
    return datetime.now(UTC)


def compute_signature(payload: str, secret: str) -> str:
    """HMAC-SHA256 of the exact request body."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def enqueue_webhook(
    db: Session,
    tenant_id,
    url: str,
    payload: dict,
    *,
    method: str = "POST",
    headers: dict | None = None,
    secret: str | None = None,
    event_type: str = "automation.rule_matched",
    rule_id=None,
    message_id=None,
) -> WebhookDelivery:
    method = (method or "POST").upper()
    if method not in ALLOWED_METHODS:
        raise ValueError(f"Unsupported webhook method: {method}")
    if not url.startswith(("http://", "https://")):
        raise ValueError("Webhook url must be http(s)")
    delivery = WebhookDelivery(
        tenant_id=coerce_uuid(tenant_id),
        rule_id=coerce_uuid(rule_id) if rule_id else None,
        message_id=coerce_uuid(message_id) if message_id else None,
        url=url,
        method=method,
        headers={str(k): str(v) for k, v in (headers or {}).items()},
        secret=secret,
        event_type=event_type,
        payload=payload,
        status=WebhookDeliveryStatus.pending,
        attempt_count=0,
        max_attempts=settings.webhook_max_attempts,
        next_attempt_at=_now(),
        attempt_log=[],
    )
    db.add(delivery)
    db.flush()
    enqueue_after_commit(db, DELIVER_WEBHOOK_TASK, delivery.id)
    return delivery


def _build_request(delivery: WebhookDelivery) -> tuple[str, dict[str, str]]:
    body = json.dumps(delivery.payload or {}, default=str, sort_keys=True)
    headers = dict(delivery.headers or {})
    headers.update(
        {
            "Content-Type": "application/json",
            "User-Agent": settings.webhook_user_agent,
            EVENT_HEADER: delivery.event_type,
            DELIVERY_HEADER: str(delivery.id),
        }
    )
    if delivery.secret:
        headers[SIGNATURE_HEADER] = f"sha256={compute_signature(body, delivery.secret)}"
    return body, headers


def _retry_delay(attempt_count: int) -> int:
    delays = settings.webhook_retry_delays or (60,)
    return delays[max(0, min(attempt_count - 1, len(delays) - 1))]


def deliver_webhook(db: Session, delivery_id, client: httpx.Client | None = None) -> WebhookDelivery | None:
    """Make one delivery attempt and record its outcome."""
    delivery = db.get(WebhookDelivery, coerce_uuid(delivery_id))
    if delivery is None:
        logger.info("webhook_delivery_missing delivery_id=%s", delivery_id)
        return None
    if delivery.status != WebhookDeliveryStatus.pending:
        return delivery

    body, headers = _build_request(delivery)
    attempt_number = (delivery.attempt_count or 0) + 1
    started_at = _now()
    status_code: int | None = None
    error: str | None = None
    retryable = False
    try:
        if client is None:
            with httpx.Client(timeout=settings.webhook_timeout) as owned_client:
                response = owned_client.request(delivery.method, delivery.url, content=body, headers=headers)
        else:
            response = client.request(delivery.method, delivery.url, content=body, headers=headers)
        status_code = response.status_code
        if not response.is_success:
            error = f"HTTP {status_code}: {response.text[:500]}"
            retryable = status_code in RETRYABLE_STATUS_CODES or status_code >= 500
    except httpx.HTTPError as exc:
        error = f"{type(exc).__name__}: {exc}"
        retryable = True

    delivery.attempt_count = attempt_number
    delivery.last_attempt_at = started_at
    delivery.response_status = status_code
    delivery.attempt_log = [
        *(delivery.attempt_log or []),
        {
            "attempt": attempt_number,
            "at": started_at.isoformat(),
            "status_code": status_code,
            "error": error,
            "duration_ms": int((_now() - started_at).total_seconds() * 1000),
        },
    ]

    if error is None:
        delivery.status = WebhookDeliveryStatus.delivered
        delivery.delivered_at = _now()
        delivery.error = None
        delivery.next_attempt_at = None
        OUTBOUND_DELIVERIES.labels(kind="webhook", status="sent").inc()
        logger.info("webhook_delivered delivery_id=%s url=%s status=%s", delivery.id, delivery.url, status_code)
    elif retryable and attempt_number < (delivery.max_attempts or settings.webhook_max_attempts):
        delivery.error = error
        delivery.next_attempt_at = _now() + timedelta(seconds=_retry_delay(attempt_number))
        OUTBOUND_DELIVERIES.labels(kind="webhook", status="retrying").inc()
        logger.warning(
            "webhook_delivery_retry delivery_id=%s attempt=%s error=%s", delivery.id, attempt_number, error
        )
    else:
        delivery.status = WebhookDeliveryStatus.failed
        delivery.error = error
        delivery.next_attempt_at = None
        OUTBOUND_DELIVERIES.labels(kind="webhook", status="failed").inc()
        logger.error("webhook_delivery_failed delivery_id=%s attempt=%s error=%s", delivery.id, attempt_number, error)

    db.commit()
    db.refresh(delivery)
    return delivery


def list_due_delivery_ids(db: Session, limit: int = 100) -> list[str]:
    now = _now()
    rows = (
        db.query(WebhookDelivery.id)
        .filter(WebhookDelivery.status == WebhookDeliveryStatus.pending)
        .filter((WebhookDelivery.next_attempt_at.is_(None)) | (WebhookDelivery.next_attempt_at <= now))
        .order_by(WebhookDelivery.next_attempt_at.asc())
        .limit(limit)
        .all()
    )
    return [str(row[0]) for row in rows]


def retry_due_webhooks(db: Session, client: httpx.Client | None = None, limit: int = 100) -> int:
    """Attempt every pending delivery whose retry time has come; returns how many were delivered."""
    delivered = 0
    for delivery_id in list_due_delivery_ids(db, limit=limit):
        delivery = deliver_webhook(db, delivery_id, client=client)
        if delivery is not None and delivery.status == WebhookDeliveryStatus.delivered:
            delivered += 1
    return delivered

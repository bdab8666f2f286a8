"""Message escalation, immediate or after an unanswered response deadline."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.omnibridge.enums import MessageDirection, MessagePriority
from app.models.omnibridge.inbox import InboxMessage
from app.services.common import as_utc, validate_enum
from app.services.omnibridge.notifications import queue_notification
from app.services.omnibridge.templates import build_template_variables, render_template

logger = get_logger(__name__)

ESCALATED_TAG = "escalated"
DEFAULT_ESCALATION_SUBJECT = "Escalated: {{subject}}"
DEFAULT_ESCALATION_BODY = "Message from {{sender_name}} on {{channel}} was escalated ({{priority}}).\n\n{{content}}"


def add_tags(existing: list | None, tags: list[str]) -> list[str]:
    merged = list(existing or [])
    for tag in tags:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in merged:
            merged.append(cleaned)
    return merged


def escalate_message(db: Session, message: InboxMessage, target: dict | None = None, rule=None) -> list:
    """Raise priority, tag the message and its ticket, and notify the targets.

    Works inside the caller's transaction. Returns the queued notifications.
    """
    target = target or {}
    level = validate_enum(target.get("level") or MessagePriority.urgent.value, MessagePriority, "level")
    message.priority = level
    message.tags = add_tags(message.tags, [ESCALATED_TAG])
    message.escalated_at = datetime.now(UTC)
    if message.ticket is not None:
        message.ticket.priority = level
        message.ticket.tags = add_tags(message.ticket.tags, [ESCALATED_TAG])

    variables = build_template_variables(message, rule)
    subject = render_template(target.get("subject") or DEFAULT_ESCALATION_SUBJECT, variables)
    body = render_template(target.get("message") or DEFAULT_ESCALATION_BODY, variables)
    channels = target.get("channels") or ["in_app"]
    queued = []
    for recipient in target.get("notify") or []:
        for channel in channels:
            queued.append(
                queue_notification(
                    db,
                    message.tenant_id,
                    channel,
                    str(recipient),
                    subject,
                    body,
                    source_rule_id=getattr(rule, "id", None) or target.get("rule_id"),
                    message_id=message.id,
                )
            )
    logger.info(
        "message_escalated message_id=%s level=%s notifications=%s", message.id, level.value, len(queued)
    )
    return queued


def escalate_overdue_messages(db: Session, now: datetime | None = None, limit: int = 200) -> int:
    """Escalate inbound messages whose response deadline passed without a response."""
    now = now or datetime.now(UTC)
    candidates = (
        db.query(InboxMessage)
        .filter(InboxMessage.direction == MessageDirection.inbound)
        .filter(InboxMessage.response_deadline.isnot(None))
        .filter(InboxMessage.response_deadline <= now)
        .filter(InboxMessage.escalated_at.is_(None))
        .filter(InboxMessage.responded_at.is_(None))
        .order_by(InboxMessage.response_deadline.asc())
        .limit(limit)
        .all()
    )
    escalated = 0
    for message in candidates:
        deadline = as_utc(message.response_deadline)
        if deadline is None or deadline > now:
            continue
        try:
            with db.begin_nested():
                escalate_message(db, message, message.escalation_target)
        except Exception:
            # Left for the next sweep; the other overdue messages still go out.
            logger.exception("message_escalation_failed message_id=%s", message.id)
            continue
        escalated += 1
    if escalated:
        db.commit()
    return escalated

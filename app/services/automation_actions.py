"""Action executor for automation rules.

Runs a matched rule's actions in ``order`` against an inbox message. Each
action runs inside its own savepoint so a failing action rolls back only
its own changes (partial failure semantics).
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType, MessagePriority, NotificationChannel
from app.models.omnibridge.inbox import InboxMessage
from app.models.omnibridge.response_template import ResponseTemplate
from app.models.omnibridge.ticket import Ticket
from app.schemas.automation_rule import canonical_action_type
from app.services.common import coerce_uuid, validate_enum
from app.services.omnibridge.channels import get_adapter
from app.services.omnibridge.escalation import add_tags, escalate_message
from app.services.omnibridge.normalizers import normalize_sender_address
from app.services.omnibridge.notifications import queue_notification
from app.services.omnibridge.observability import ACTION_RESULTS
from app.services.omnibridge.outbox import build_idempotency_key, enqueue_outbound_message
from app.services.omnibridge.templates import build_template_variables, render_template, response_templates
from app.services.omnibridge.webhooks import enqueue_webhook

logger = logging.getLogger(__name__)

MAX_AUTOMATION_DEPTH = 3
AUTOMATION_DEPTH_KEY = "automation_depth"


class ActionSkipped(Exception):
    """The action had nothing to do for this message; not a failure."""


@dataclass
class ActionContext:
    db: Session
    rule: Any
    message: InboxMessage
    channel: Channel
    index: int

    @property
    def variables(self) -> dict[str, Any]:
        return build_template_variables(self.message, self.rule)

    @property
    def depth(self) -> int:
        metadata = self.message.metadata_ if isinstance(self.message.metadata_, dict) else {}
        try:
            return int(metadata.get(AUTOMATION_DEPTH_KEY) or 0)
        except (TypeError, ValueError):
            return 0

    def idempotency_key(self, suffix: str | None = None) -> str:
        return build_idempotency_key(self.rule.id, self.message.id, self.index, suffix)


def sort_actions(actions: list[dict] | None) -> list[tuple[int, dict]]:
    """Pair each action with its position, ordered by ``order`` (stable for ties)."""
    indexed = list(enumerate(actions or []))
    return sorted(indexed, key=lambda item: _order_of(item[1], item[0]))


def _order_of(action: dict, fallback: int) -> int:
    try:
        return int(action.get("order", fallback))
    except (TypeError, ValueError):
        return fallback


def execute_actions(db: Session, rule, message: InboxMessage, channel: Channel) -> list[dict]:
    """Execute the rule's actions and return per-action results.

    Returns a list of ``{action_type, success, error, data}`` dicts.
    """
    results: list[dict] = []
    for index, action in sort_actions(rule.actions):
        raw_type = str(action.get("action_type") or action.get("type") or "")
        action_type = canonical_action_type(raw_type)
        params = action.get("params") or action.get("config") or {}
        ctx = ActionContext(db=db, rule=rule, message=message, channel=channel, index=index)
        handler = _HANDLERS.get(action_type)
        try:
            if handler is None:
                raise ValueError(f"Unknown action type: {raw_type}")
            with db.begin_nested():
                data = handler(ctx, params if isinstance(params, dict) else {})
            results.append({"action_type": action_type, "success": True, "error": None, "data": data or {}})
            ACTION_RESULTS.labels(action_type=action_type, status="success").inc()
        except ActionSkipped as skipped:
            results.append(
                {"action_type": action_type, "success": True, "error": None, "data": {"skipped": str(skipped)}}
            )
            ACTION_RESULTS.labels(action_type=action_type, status="skipped").inc()
        except Exception as exc:
            logger.exception("Automation action %s failed: %s", action_type, exc)
            results.append({"action_type": action_type, "success": False, "error": str(exc), "data": {}})
            ACTION_RESULTS.labels(action_type=action_type or "unknown", status="failure").inc()
    return results


def _string_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    return [str(item).strip() for item in value if str(item).strip()]


def _is_auto_submitted(message: InboxMessage) -> bool:
    metadata = message.metadata_ if isinstance(message.metadata_, dict) else {}
    return bool(metadata.get("auto_submitted"))


def _reply_options(ctx: ActionContext) -> dict[str, Any]:
    message = ctx.message
    metadata = message.metadata_ if isinstance(message.metadata_, dict) else {}
    options: dict[str, Any] = {
        "auto_submitted": True,
        AUTOMATION_DEPTH_KEY: ctx.depth + 1,
        "sender_name": settings.auto_reply_from_name,
    }
    if message.channel_type == ChannelType.email:
        rfc_id = metadata.get("rfc_message_id")
        if rfc_id:
            options["in_reply_to"] = rfc_id
            references = metadata.get("references")
            options["references"] = f"{references} {rfc_id}" if references else rfc_id
    elif message.channel_type == ChannelType.telegram:
        if metadata.get("telegram_message_id") is not None:
            options["reply_to_message_id"] = metadata["telegram_message_id"]
        options["omit_subject"] = True
    elif message.channel_type == ChannelType.chat:
        options["session_id"] = message.thread_id
    return options


def _render_body(ctx: ActionContext, params: dict, default_subject: str | None) -> tuple[str | None, str]:
    variables = ctx.variables
    template_id = params.get("template_id")
    if template_id:
        template = ctx.db.get(ResponseTemplate, coerce_uuid(template_id))
        if template is None or template.tenant_id != ctx.message.tenant_id or not template.is_active:
            raise ValueError(f"Response template {template_id} not found")
        subject, body = response_templates.render(template, variables, ctx.message.channel_type.value)
        template.usage_count = (template.usage_count or 0) + 1
        return subject or render_template(default_subject, variables), body
    text = params.get("message") or params.get("body")
    if not text:
        raise ValueError("reply requires 'message' or 'template_id'")
    subject = render_template(params.get("subject") or default_subject, variables)
    return subject or None, render_template(text, variables)


def _execute_reply(ctx: ActionContext, params: dict) -> dict:
    message = ctx.message
    if _is_auto_submitted(message):
        raise ActionSkipped("auto_submitted")
    recipient = message.from_address
    if not recipient:
        raise ValueError("Message has no sender to reply to")
    adapter = get_adapter(message.channel_type)
    if normalize_sender_address(message.channel_type, recipient) in adapter.self_addresses(ctx.channel):
        raise ActionSkipped("self_address")
    default_subject = None
    if message.channel_type == ChannelType.email:
        original = message.subject or ""
        default_subject = original if original.lower().startswith("re:") else f"Re: {original}".strip()
    subject, body = _render_body(ctx, params, default_subject)
    outbox, created = enqueue_outbound_message(
        ctx.db,
        channel=ctx.channel,
        recipient=recipient,
        subject=subject,
        body=body,
        in_reply_to_id=message.id,
        source_rule_id=ctx.rule.id,
        options=_reply_options(ctx),
        idempotency_key=ctx.idempotency_key(),
    )
    return {"outbox_id": str(outbox.id), "created": created}


def _target_channel(ctx: ActionContext, params: dict) -> Channel:
    channel_id = params.get("channel_id")
    if not channel_id:
        return ctx.channel
    channel = ctx.db.get(Channel, coerce_uuid(channel_id))
    if channel is None or channel.tenant_id != ctx.message.tenant_id or not channel.is_active:
        raise ValueError(f"Forward channel {channel_id} not found")
    return channel


def _execute_forward(ctx: ActionContext, params: dict) -> dict:
    recipients = _string_list(params.get("recipients") or params.get("to"))
    if not recipients:
        raise ValueError("forward requires 'recipients'")
    channel = _target_channel(ctx, params)
    message = ctx.message
    variables = ctx.variables
    note = render_template(params.get("note"), variables)
    forwarded = (
        "---------- Forwarded message ----------\n"
        f"From: {variables['sender_name']} <{variables['sender']}>\n"
        f"Channel: {variables['channel']}\n"
        f"Subject: {variables['subject']}\n\n"
        f"{variables['content']}"
    )
    body = f"{note}\n\n{forwarded}" if note else forwarded
    subject = render_template(params.get("subject") or "Fwd: {{subject}}", variables)
    outbox_ids = []
    for position, recipient in enumerate(recipients):
        outbox, _ = enqueue_outbound_message(
            ctx.db,
            channel=channel,
            recipient=recipient,
            subject=subject,
            body=body,
            in_reply_to_id=message.id,
            source_rule_id=ctx.rule.id,
            options={AUTOMATION_DEPTH_KEY: ctx.depth + 1, "auto_submitted": True},
            idempotency_key=ctx.idempotency_key(f"to:{position}"),
        )
        outbox_ids.append(str(outbox.id))
    return {"outbox_ids": outbox_ids}


def _execute_create_ticket(ctx: ActionContext, params: dict) -> dict:
    message = ctx.message
    existing = None
    if message.ticket_id:
        existing = ctx.db.get(Ticket, message.ticket_id)
    if existing is None:
        existing = ctx.db.query(Ticket).filter(Ticket.source_message_id == message.id).first()
    if existing is not None:
        message.ticket_id = existing.id
        return {"ticket_id": str(existing.id), "created": False}

    variables = ctx.variables
    subject = render_template(params.get("subject") or params.get("title") or "{{subject}}", variables).strip()
    if not subject:
        subject = render_template("Message from {{sender_name}} via {{channel}}", variables)
    description = render_template(params.get("description") or "{{content}}", variables)
    priority = message.priority
    if params.get("priority"):
        priority = validate_enum(params["priority"], MessagePriority, "priority")
    ticket = Ticket(
        tenant_id=message.tenant_id,
        subject=subject[:500],
        description=description,
        priority=priority,
        category=params.get("category"),
        assigned_to=params.get("assign_to") or params.get("assignee") or message.assigned_to,
        requester_address=message.from_address,
        requester_name=message.from_name,
        source_channel=message.channel_type.value,
        source_message_id=message.id,
        source_rule_id=ctx.rule.id,
        tags=_string_list(params.get("tags")) or list(message.tags or []),
    )
    ctx.db.add(ticket)
    ctx.db.flush()
    message.ticket_id = ticket.id
    message.ticket = ticket
    return {"ticket_id": str(ticket.id), "created": True}


def _execute_notify(ctx: ActionContext, params: dict) -> dict:
    recipients = _string_list(params.get("recipients") or params.get("users"))
    if not recipients:
        raise ValueError("notify requires 'recipients'")
    channels = _string_list(params.get("channels")) or ["in_app"]
    variables = ctx.variables
    subject = render_template(params.get("subject") or "New message: {{subject}}", variables)
    body = render_template(
        params.get("message") or "{{sender_name}} wrote on {{channel}}:\n\n{{content}}",
        variables,
    )
    notification_ids = []
    for recipient in recipients:
        for channel in channels:
            notification = queue_notification(
                ctx.db,
                ctx.message.tenant_id,
                channel,
                recipient,
                subject,
                body,
                source_rule_id=ctx.rule.id,
                message_id=ctx.message.id,
            )
            notification_ids.append(str(notification.id))
    return {"notification_ids": notification_ids}


def _execute_tag(ctx: ActionContext, params: dict) -> dict:
    tags = _string_list(params.get("tags") or params.get("tag"))
    if not tags:
        raise ValueError("tag requires 'tags'")
    ctx.message.tags = add_tags(ctx.message.tags, tags)
    if ctx.message.ticket is not None:
        ctx.message.ticket.tags = add_tags(ctx.message.ticket.tags, tags)
    return {"tags": list(ctx.message.tags)}


def _execute_assign(ctx: ActionContext, params: dict) -> dict:
    assignee = params.get("assignee") or params.get("user_id") or params.get("agent_id") or params.get("team")
    if not assignee:
        raise ValueError("assign requires 'assignee'")
    ctx.message.assigned_to = str(assignee)
    if ctx.message.ticket is not None:
        ctx.message.ticket.assigned_to = str(assignee)
    return {"assigned_to": str(assignee)}


def _execute_escalate(ctx: ActionContext, params: dict) -> dict:
    level = str(params.get("level") or MessagePriority.urgent.value)
    if level not in {item.value for item in MessagePriority}:
        raise ValueError(f"escalate level must be one of low, medium, high, urgent, not {level!r}")
    channels = _string_list(params.get("channels")) or [NotificationChannel.in_app.value]
    unknown = [channel for channel in channels if channel not in {item.value for item in NotificationChannel}]
    if unknown:
        raise ValueError(f"escalate channels not supported: {', '.join(unknown)}")
    target = {
        "level": level,
        "notify": _string_list(params.get("notify") or params.get("recipients")),
        "channels": channels,
        "subject": params.get("subject"),
        "message": params.get("message"),
        "rule_id": str(ctx.rule.id),
    }
    try:
        delay_minutes = int(params.get("delay_minutes") or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError("delay_minutes must be an integer") from exc
    if delay_minutes > 0:
        ctx.message.response_deadline = datetime.now(UTC) + timedelta(minutes=delay_minutes)
        ctx.message.escalation_target = target
        return {"scheduled_for": ctx.message.response_deadline.isoformat()}
    queued = escalate_message(ctx.db, ctx.message, target, ctx.rule)
    return {"escalated": True, "notifications": len(queued)}


def _message_payload(message: InboxMessage) -> dict:
    return {
        "id": str(message.id),
        "channel_type": message.channel_type.value,
        "channel_id": str(message.channel_id),
        "from_address": message.from_address,
        "from_name": message.from_name,
        "subject": message.subject,
        "content": message.body_text or message.body_html or "",
        "priority": message.priority.value if message.priority else None,
        "tags": list(message.tags or []),
        "thread_id": message.thread_id,
        "ticket_id": str(message.ticket_id) if message.ticket_id else None,
        "received_at": message.received_at.isoformat() if message.received_at else None,
    }


def _execute_webhook(ctx: ActionContext, params: dict) -> dict:
    url = params.get("url")
    if not url:
        raise ValueError("webhook requires 'url'")
    event_type = params.get("event") or "automation.rule_matched"
    payload = {
        "event": event_type,
        "rule": {"id": str(ctx.rule.id), "name": ctx.rule.name},
        "message": _message_payload(ctx.message),
        "timestamp": datetime.now(UTC).isoformat(),
        "tenant_id": str(ctx.message.tenant_id),
    }
    delivery = enqueue_webhook(
        ctx.db,
        ctx.message.tenant_id,
        url,
        payload,
        method=params.get("method") or "POST",
        headers=params.get("headers") if isinstance(params.get("headers"), dict) else None,
        secret=params.get("secret"),
        event_type=event_type,
        rule_id=ctx.rule.id,
        message_id=ctx.message.id,
    )
    return {"delivery_id": str(delivery.id)}


def _execute_set_priority(ctx: ActionContext, params: dict) -> dict:
    priority = validate_enum(params.get("priority"), MessagePriority, "priority")
    ctx.message.priority = priority
    if ctx.message.ticket is not None:
        ctx.message.ticket.priority = priority
    return {"priority": priority.value}


def _execute_archive(ctx: ActionContext, params: dict) -> dict:
    ctx.message.is_archived = True
    return {"archived": True}


def _execute_mark_read(ctx: ActionContext, params: dict) -> dict:
    ctx.message.is_read = True
    return {"read": True}


_HANDLERS = {
    "reply": _execute_reply,
    "forward": _execute_forward,
    "create_ticket": _execute_create_ticket,
    "notify": _execute_notify,
    "tag": _execute_tag,
    "assign": _execute_assign,
    "escalate": _execute_escalate,
    "webhook": _execute_webhook,
    "set_priority": _execute_set_priority,
    "archive": _execute_archive,
    "mark_read": _execute_mark_read,
}

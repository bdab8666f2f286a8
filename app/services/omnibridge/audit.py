"""Execution log queries and the analytics summary."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.automation_rule import AutomationLogOutcome, AutomationRuleLog
from app.models.omnibridge.enums import MessageDirection, NotificationStatus, WebhookDeliveryStatus
from app.models.omnibridge.inbox import InboxMessage
from app.models.omnibridge.notification import Notification
from app.models.omnibridge.outbox import OutboxMessage
from app.models.omnibridge.ticket import Ticket
from app.models.omnibridge.webhook import WebhookDelivery
from app.services.common import apply_pagination, coerce_uuid, validate_enum
from app.services.response import ListResponseMixin


class ExecutionLogsManager(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        rule_id: str | None = None,
        message_id: str | None = None,
        outcome: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AutomationRuleLog]:
        query = db.query(AutomationRuleLog).filter(AutomationRuleLog.tenant_id == coerce_uuid(tenant_id))
        if rule_id:
            query = query.filter(AutomationRuleLog.rule_id == coerce_uuid(rule_id))
        if message_id:
            query = query.filter(AutomationRuleLog.message_id == coerce_uuid(message_id))
        if outcome:
            query = query.filter(
                AutomationRuleLog.outcome == validate_enum(outcome, AutomationLogOutcome, "outcome")
            )
        if start:
            query = query.filter(AutomationRuleLog.created_at >= start)
        if end:
            query = query.filter(AutomationRuleLog.created_at < end)
        query = query.order_by(AutomationRuleLog.created_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get(db: Session, tenant_id, log_id) -> AutomationRuleLog:
        log = db.get(AutomationRuleLog, coerce_uuid(log_id))
        if not log or log.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Execution log not found")
        return log

    @staticmethod
    def outcome_counts(db: Session, tenant_id, rule_id: str | None = None) -> dict[str, int]:
        query = db.query(AutomationRuleLog.outcome, func.count(AutomationRuleLog.id)).filter(
            AutomationRuleLog.tenant_id == coerce_uuid(tenant_id)
        )
        if rule_id:
            query = query.filter(AutomationRuleLog.rule_id == coerce_uuid(rule_id))
        counts = {outcome.value: 0 for outcome in AutomationLogOutcome}
        for outcome, count in query.group_by(AutomationRuleLog.outcome).all():
            counts[outcome.value] = count
        return counts


def _grouped(db: Session, column, tenant_column, created_column, tenant_id, start, end) -> dict[str, int]:
    rows = (
        db.query(column, func.count())
        .filter(tenant_column == tenant_id)
        .filter(created_column >= start, created_column < end)
        .group_by(column)
        .all()
    )
    return {getattr(key, "value", key): count for key, count in rows if key is not None}


def analytics_summary(db: Session, tenant_id, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Counts for one tenant over ``[start, end)``; defaults to the last seven days."""
    tenant_uuid = coerce_uuid(tenant_id)
    end = end or datetime.now(UTC)
    start = start or end - timedelta(days=7)

    inbound = (
        db.query(InboxMessage)
        .filter(InboxMessage.tenant_id == tenant_uuid)
        .filter(InboxMessage.direction == MessageDirection.inbound)
        .filter(InboxMessage.received_at >= start, InboxMessage.received_at < end)
    )
    inbound_by_channel = {
        key.value: count
        for key, count in inbound.with_entities(InboxMessage.channel_type, func.count(InboxMessage.id))
        .group_by(InboxMessage.channel_type)
        .all()
    }
    processed = inbound.filter(InboxMessage.is_processed.is_(True)).count()
    total = inbound.count()

    executions = {outcome.value: 0 for outcome in AutomationLogOutcome}
    executions.update(
        _grouped(
            db,
            AutomationRuleLog.outcome,
            AutomationRuleLog.tenant_id,
            AutomationRuleLog.created_at,
            tenant_uuid,
            start,
            end,
        )
    )
    notifications = {status.value: 0 for status in NotificationStatus}
    notifications.update(
        _grouped(db, Notification.status, Notification.tenant_id, Notification.created_at, tenant_uuid, start, end)
    )
    webhooks = {status.value: 0 for status in WebhookDeliveryStatus}
    webhooks.update(
        _grouped(
            db,
            WebhookDelivery.status,
            WebhookDelivery.tenant_id,
            WebhookDelivery.created_at,
            tenant_uuid,
            start,
            end,
        )
    )
    outbox = _grouped(
        db, OutboxMessage.status, OutboxMessage.tenant_id, OutboxMessage.created_at, tenant_uuid, start, end
    )
    tickets_created = (
        db.query(func.count(Ticket.id))
        .filter(Ticket.tenant_id == tenant_uuid)
        .filter(Ticket.created_at >= start, Ticket.created_at < end)
        .scalar()
    )
    return {
        "period_start": start,
        "period_end": end,
        "inbound_by_channel": inbound_by_channel,
        "processed": processed,
        "pending": total - processed,
        "executions_by_outcome": executions,
        "notifications_by_status": notifications,
        "webhooks_by_status": webhooks,
        "outbox_by_status": outbox,
        "tickets_created": tickets_created or 0,
    }


execution_logs = ExecutionLogsManager()


class DeliveriesManager:
    """Read access to outbound delivery records."""

    @staticmethod
    def list_webhooks(
        db: Session,
        tenant_id,
        *,
        status: str | None = None,
        rule_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookDelivery]:
        query = db.query(WebhookDelivery).filter(WebhookDelivery.tenant_id == coerce_uuid(tenant_id))
        if status:
            query = query.filter(WebhookDelivery.status == validate_enum(status, WebhookDeliveryStatus, "status"))
        if rule_id:
            query = query.filter(WebhookDelivery.rule_id == coerce_uuid(rule_id))
        query = query.order_by(WebhookDelivery.created_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get_webhook(db: Session, tenant_id, delivery_id) -> WebhookDelivery:
        delivery = db.get(WebhookDelivery, coerce_uuid(delivery_id))
        if not delivery or delivery.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Webhook delivery not found")
        return delivery

    @staticmethod
    def list_outbox(
        db: Session,
        tenant_id,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OutboxMessage]:
        query = db.query(OutboxMessage).filter(OutboxMessage.tenant_id == coerce_uuid(tenant_id))
        if status:
            query = query.filter(OutboxMessage.status == status)
        query = query.order_by(OutboxMessage.created_at.desc())
        return apply_pagination(query, limit, offset).all()


deliveries = DeliveriesManager()

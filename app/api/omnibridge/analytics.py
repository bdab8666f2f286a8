from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.automation_rule import AutomationRuleLogRead
from app.schemas.common import ListResponse
from app.schemas.omnibridge.delivery import AnalyticsSummary, OutboxMessageRead, WebhookDeliveryRead
from app.services.omnibridge.audit import analytics_summary, deliveries, execution_logs

router = APIRouter(tags=["omnibridge-analytics"])


@router.get("/analytics/summary", response_model=AnalyticsSummary)
def get_summary(
    start: datetime | None = None,
    end: datetime | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return analytics_summary(db, tenant_id, start=start, end=end)


@router.get("/executions", response_model=ListResponse[AutomationRuleLogRead])
def list_executions(
    rule_id: str | None = None,
    message_id: str | None = None,
    outcome: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return execution_logs.list_response(
        db,
        tenant_id,
        rule_id=rule_id,
        message_id=message_id,
        outcome=outcome,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )


@router.get("/executions/outcomes", response_model=dict[str, int])
def execution_outcomes(
    rule_id: str | None = None, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)
):
    return execution_logs.outcome_counts(db, tenant_id, rule_id=rule_id)


@router.get("/executions/{log_id}", response_model=AutomationRuleLogRead)
def get_execution(log_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return execution_logs.get(db, tenant_id, log_id)


@router.get("/deliveries/webhooks", response_model=list[WebhookDeliveryRead])
def list_webhook_deliveries(
    status: str | None = None,
    rule_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return deliveries.list_webhooks(db, tenant_id, status=status, rule_id=rule_id, limit=limit, offset=offset)


@router.get("/deliveries/webhooks/{delivery_id}", response_model=WebhookDeliveryRead)
def get_webhook_delivery(delivery_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return deliveries.get_webhook(db, tenant_id, delivery_id)


@router.get("/deliveries/outbox", response_model=list[OutboxMessageRead])
def list_outbox(
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return deliveries.list_outbox(db, tenant_id, status=status, limit=limit, offset=offset)

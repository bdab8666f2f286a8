from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.automation_rule import (
    AutomationRuleCreate,
    AutomationRuleLogRead,
    AutomationRuleRead,
    AutomationRuleStatusUpdate,
    AutomationRuleUpdate,
    RuleTemplateRead,
    RuleTestRequest,
    RuleTestResult,
)
from app.schemas.common import ListResponse
from app.services.automation_rules import automation_rules_service, list_rule_templates

router = APIRouter(prefix="/rules", tags=["omnibridge-rules"])


@router.get("/templates", response_model=list[RuleTemplateRead])
def get_rule_templates():
    return list_rule_templates()


@router.post(
    "/templates/{template_key}",
    response_model=AutomationRuleRead,
    status_code=status.HTTP_201_CREATED,
)
def create_rule_from_template(
    template_key: str,
    overrides: dict | None = Body(default=None),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.create_from_template(db, tenant_id, template_key, overrides)


@router.get("/stats", response_model=dict[str, int])
def rule_counts(tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return automation_rules_service.count_by_status(db, tenant_id)


@router.get("", response_model=ListResponse[AutomationRuleRead])
def list_rules(
    status: str | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="priority"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.list_response(
        db,
        tenant_id,
        status=status,
        search=search,
        is_active=is_active,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: AutomationRuleCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.create(db, tenant_id, payload)


@router.get("/{rule_id}", response_model=AutomationRuleRead)
def get_rule(rule_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return automation_rules_service.get(db, tenant_id, rule_id)


@router.patch("/{rule_id}", response_model=AutomationRuleRead)
def update_rule(
    rule_id: str,
    payload: AutomationRuleUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.update(db, tenant_id, rule_id, payload)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    automation_rules_service.delete(db, tenant_id, rule_id)


@router.post("/{rule_id}/status", response_model=AutomationRuleRead)
def set_rule_status(
    rule_id: str,
    payload: AutomationRuleStatusUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.toggle_status(db, tenant_id, rule_id, payload.status)


@router.post("/{rule_id}/test", response_model=RuleTestResult)
def test_rule(
    rule_id: str,
    payload: RuleTestRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.test_rule(db, tenant_id, rule_id, payload)


@router.get("/{rule_id}/logs", response_model=list[AutomationRuleLogRead])
def rule_logs(
    rule_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return automation_rules_service.recent_logs(db, tenant_id, rule_id, limit=limit)

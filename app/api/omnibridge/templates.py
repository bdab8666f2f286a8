from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.common import ListResponse
from app.schemas.omnibridge.template import (
    ResponseTemplateCreate,
    ResponseTemplateRead,
    ResponseTemplateUpdate,
    TemplatePreview,
    TemplatePreviewRequest,
)
from app.services.omnibridge.templates import response_templates

router = APIRouter(prefix="/templates", tags=["omnibridge-templates"])


@router.get("", response_model=ListResponse[ResponseTemplateRead])
def list_templates(
    category: str | None = None,
    search: str | None = None,
    is_active: bool | None = True,
    order_by: str = Query(default="name"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return response_templates.list_response(
        db,
        tenant_id,
        category=category,
        search=search,
        is_active=is_active,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=ResponseTemplateRead, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: ResponseTemplateCreate, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)
):
    return response_templates.create(db, tenant_id, payload)


@router.get("/{template_id}", response_model=ResponseTemplateRead)
def get_template(template_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return response_templates.get(db, tenant_id, template_id)


@router.patch("/{template_id}", response_model=ResponseTemplateRead)
def update_template(
    template_id: str,
    payload: ResponseTemplateUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return response_templates.update(db, tenant_id, template_id, payload)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(template_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    response_templates.delete(db, tenant_id, template_id)


@router.post("/{template_id}/preview", response_model=TemplatePreview)
def preview_template(
    template_id: str,
    payload: TemplatePreviewRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    template = response_templates.get(db, tenant_id, template_id)
    subject, body = response_templates.render(template, payload.variables, payload.channel_type)
    return TemplatePreview(subject=subject, body=body)

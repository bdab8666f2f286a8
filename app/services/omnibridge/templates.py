"""Response templates and ``{{placeholder}}`` rendering."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.omnibridge.response_template import ResponseTemplate
from app.schemas.omnibridge.template import ResponseTemplateCreate, ResponseTemplateUpdate
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.response import ListResponseMixin

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")


def render_template(text: str | None, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names render as empty strings."""
    if not text:
        return ""

    def _sub(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text)


def build_template_variables(message, rule=None) -> dict[str, Any]:
    """Variables available to reply, forward, ticket and notification templates."""
    received_at = getattr(message, "received_at", None) or datetime.now(UTC)
    channel_type = getattr(message, "channel_type", None)
    priority = getattr(message, "priority", None)
    content = getattr(message, "body_text", None) or getattr(message, "body_html", None) or ""
    return {
        "sender": getattr(message, "from_address", None) or "",
        "sender_name": getattr(message, "from_name", None) or getattr(message, "from_address", None) or "",
        "channel": channel_type.value if channel_type is not None else "",
        "subject": getattr(message, "subject", None) or "",
        "content": content,
        "priority": priority.value if priority is not None else "",
        "message_id": str(getattr(message, "id", "") or ""),
        "ticket_id": str(getattr(message, "ticket_id", "") or ""),
        "tenant_id": str(getattr(message, "tenant_id", "") or ""),
        "rule_name": getattr(rule, "name", "") if rule is not None else "",
        "timestamp": received_at.isoformat(),
    }


class ResponseTemplatesManager(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        category: str | None = None,
        search: str | None = None,
        is_active: bool | None = True,
        order_by: str = "name",
        order_dir: str = "asc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[ResponseTemplate]:
        query = db.query(ResponseTemplate).filter(ResponseTemplate.tenant_id == coerce_uuid(tenant_id))
        if category:
            query = query.filter(ResponseTemplate.category == category)
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(or_(ResponseTemplate.name.ilike(like), ResponseTemplate.body.ilike(like)))
        if is_active is not None:
            query = query.filter(ResponseTemplate.is_active == is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "name": ResponseTemplate.name,
                "created_at": ResponseTemplate.created_at,
                "usage_count": ResponseTemplate.usage_count,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get(db: Session, tenant_id, template_id) -> ResponseTemplate:
        template = db.get(ResponseTemplate, coerce_uuid(template_id))
        if not template or template.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Response template not found")
        return template

    @staticmethod
    def create(db: Session, tenant_id, payload: ResponseTemplateCreate) -> ResponseTemplate:
        template = ResponseTemplate(tenant_id=coerce_uuid(tenant_id), **payload.model_dump())
        db.add(template)
        db.commit()
        db.refresh(template)
        return template

    @staticmethod
    def update(db: Session, tenant_id, template_id, payload: ResponseTemplateUpdate) -> ResponseTemplate:
        template = ResponseTemplatesManager.get(db, tenant_id, template_id)
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(template, key, value)
        db.commit()
        db.refresh(template)
        return template

    @staticmethod
    def delete(db: Session, tenant_id, template_id) -> None:
        template = ResponseTemplatesManager.get(db, tenant_id, template_id)
        template.is_active = False
        db.commit()

    @staticmethod
    def render(
        template: ResponseTemplate,
        variables: dict[str, Any],
        channel_type: str | None = None,
    ) -> tuple[str | None, str]:
        """Return (subject, body), preferring the channel specific body."""
        body = template.body
        channel_bodies = template.channel_bodies if isinstance(template.channel_bodies, dict) else {}
        if channel_type and channel_bodies.get(channel_type):
            body = channel_bodies[channel_type]
        subject = render_template(template.subject, variables) if template.subject else None
        return subject, render_template(body, variables)


response_templates = ResponseTemplatesManager()

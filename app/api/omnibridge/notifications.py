from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.common import ListResponse
from app.schemas.omnibridge.delivery import NotificationRead
from app.services.omnibridge.notifications import notifications

router = APIRouter(prefix="/notifications", tags=["omnibridge-notifications"])


@router.get("", response_model=ListResponse[NotificationRead])
def list_notifications(
    recipient: str = Query(min_length=1),
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return notifications.list_response(
        db, tenant_id, recipient=recipient, unread_only=unread_only, limit=limit, offset=offset
    )


@router.get("/{notification_id}", response_model=NotificationRead)
def get_notification(notification_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return notifications.get(db, tenant_id, notification_id)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)
):
    return notifications.mark_read(db, tenant_id, notification_id)

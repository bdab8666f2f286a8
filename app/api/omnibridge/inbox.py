from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.common import ListResponse
from app.schemas.omnibridge.inbox import InboxMessageRead, UnreadCount
from app.services.omnibridge.inbox import inbox

router = APIRouter(prefix="/inbox", tags=["omnibridge-inbox"])


@router.get("", response_model=ListResponse[InboxMessageRead])
def list_messages(
    channel_type: str | None = None,
    channel_id: str | None = None,
    direction: str | None = None,
    priority: str | None = None,
    is_read: bool | None = None,
    is_processed: bool | None = None,
    is_archived: bool | None = False,
    thread_id: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    order_by: str = Query(default="received_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return inbox.list_response(
        db,
        tenant_id,
        channel_type=channel_type,
        channel_id=channel_id,
        direction=direction,
        priority=priority,
        is_read=is_read,
        is_processed=is_processed,
        is_archived=is_archived,
        thread_id=thread_id,
        tag=tag,
        search=search,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return UnreadCount(unread=inbox.unread_count(db, tenant_id))


@router.get("/{message_id}", response_model=InboxMessageRead)
def get_message(message_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return inbox.get(db, tenant_id, message_id)


@router.post("/{message_id}/read", response_model=InboxMessageRead)
def mark_read(message_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return inbox.mark_read(db, tenant_id, message_id)


@router.post("/{message_id}/unread", response_model=InboxMessageRead)
def mark_unread(message_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return inbox.mark_read(db, tenant_id, message_id, is_read=False)


@router.post("/{message_id}/responded", response_model=InboxMessageRead)
def mark_responded(message_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return inbox.mark_responded(db, tenant_id, message_id)


@router.post("/{message_id}/archive", response_model=InboxMessageRead)
def archive_message(message_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return inbox.archive(db, tenant_id, message_id)

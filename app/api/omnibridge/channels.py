from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.common import ListResponse
from app.schemas.omnibridge.channel import (
    ChannelCreate,
    ChannelPollResult,
    ChannelRead,
    ChannelUpdate,
    TelegramWebhookRegister,
)
from app.services.omnibridge.channel_configs import channels

router = APIRouter(prefix="/channels", tags=["omnibridge-channels"])


@router.get("", response_model=ListResponse[ChannelRead])
def list_channels(
    channel_type: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    items = channels.list(
        db,
        tenant_id,
        channel_type=channel_type,
        is_active=is_active,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )
    return {
        "items": [ChannelRead.from_channel(item) for item in items],
        "count": len(items),
        "limit": limit,
        "offset": offset,
    }


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
def create_channel(payload: ChannelCreate, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return ChannelRead.from_channel(channels.create(db, tenant_id, payload))


@router.get("/{channel_id}", response_model=ChannelRead)
def get_channel(channel_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return ChannelRead.from_channel(channels.get(db, tenant_id, channel_id))


@router.patch("/{channel_id}", response_model=ChannelRead)
def update_channel(
    channel_id: str,
    payload: ChannelUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return ChannelRead.from_channel(channels.update(db, tenant_id, channel_id, payload))


@router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_channel(channel_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    channels.delete(db, tenant_id, channel_id)


@router.post("/{channel_id}/poll", response_model=ChannelPollResult)
def poll_channel(channel_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    counts = channels.poll_now(db, tenant_id, channel_id)
    return ChannelPollResult(
        channel_id=channel_id,
        processed=counts.get("processed", 0),
        skipped=counts.get("skipped", 0),
        duplicates=counts.get("duplicate", 0),
    )


@router.post("/{channel_id}/telegram/webhook")
def register_telegram_webhook(
    channel_id: str,
    payload: TelegramWebhookRegister,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return channels.register_telegram_webhook(db, tenant_id, channel_id, payload.url)

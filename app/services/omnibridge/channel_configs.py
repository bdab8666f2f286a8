"""Channel configuration management."""

from __future__ import annotations

import secrets

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.channel import ChannelCreate, ChannelUpdate
from app.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from app.services.omnibridge.channels import get_adapter
from app.services.omnibridge.email_polling import poll_email_channel
from app.services.response import ListResponseMixin

logger = get_logger(__name__)

MASKED_VALUE = "********"
SUPPORTED_CHANNEL_TYPES = {ChannelType.email, ChannelType.telegram, ChannelType.chat}


def _validate_config(channel_type: ChannelType, config: dict) -> None:
    if channel_type not in SUPPORTED_CHANNEL_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported channel type: {channel_type.value}")
    if channel_type == ChannelType.email:
        imap = config.get("imap")
        if imap is not None and (not isinstance(imap, dict) or not imap.get("host")):
            raise HTTPException(status_code=400, detail="imap config requires a host")
        smtp = config.get("smtp")
        if smtp is not None and (not isinstance(smtp, dict) or not smtp.get("host")):
            raise HTTPException(status_code=400, detail="smtp config requires a host")
    if channel_type == ChannelType.telegram and not config.get("bot_token"):
        raise HTTPException(status_code=400, detail="telegram channels require a bot_token")


def _merge_config(existing: dict | None, incoming: dict) -> dict:
    """Apply an update without clobbering secrets the client only saw masked."""
    merged = dict(existing or {})
    for key, value in incoming.items():
        if value == MASKED_VALUE:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


class ChannelsManager(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        channel_type: str | None = None,
        is_active: bool | None = None,
        order_by: str = "created_at",
        order_dir: str = "asc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[Channel]:
        query = db.query(Channel).filter(Channel.tenant_id == coerce_uuid(tenant_id))
        if channel_type:
            query = query.filter(Channel.channel_type == validate_enum(channel_type, ChannelType, "channel_type"))
        if is_active is not None:
            query = query.filter(Channel.is_active.is_(is_active))
        query = apply_ordering(
            query, order_by, order_dir, {"created_at": Channel.created_at, "name": Channel.name}
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get(db: Session, tenant_id, channel_id) -> Channel:
        channel = db.get(Channel, coerce_uuid(channel_id))
        if not channel or channel.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Channel not found")
        return channel

    @staticmethod
    def create(db: Session, tenant_id, payload: ChannelCreate) -> Channel:
        _validate_config(payload.channel_type, payload.config)
        channel = Channel(tenant_id=coerce_uuid(tenant_id), **payload.model_dump())
        db.add(channel)
        db.commit()
        db.refresh(channel)
        logger.info("channel_created channel_id=%s type=%s", channel.id, channel.channel_type.value)
        return channel

    @staticmethod
    def update(db: Session, tenant_id, channel_id, payload: ChannelUpdate) -> Channel:
        channel = ChannelsManager.get(db, tenant_id, channel_id)
        data = payload.model_dump(exclude_unset=True)
        if "config" in data and data["config"] is not None:
            config = _merge_config(channel.config, data.pop("config"))
            _validate_config(channel.channel_type, config)
            channel.config = config
        for key, value in data.items():
            if key == "config":
                continue
            setattr(channel, key, value)
        db.commit()
        db.refresh(channel)
        return channel

    @staticmethod
    def delete(db: Session, tenant_id, channel_id) -> None:
        # Messages keep pointing at the channel, so it is only deactivated.
        channel = ChannelsManager.get(db, tenant_id, channel_id)
        channel.is_active = False
        channel.is_monitoring = False
        db.commit()

    @staticmethod
    def poll_now(db: Session, tenant_id, channel_id) -> dict:
        channel = ChannelsManager.get(db, tenant_id, channel_id)
        if channel.channel_type != ChannelType.email:
            raise HTTPException(status_code=400, detail="Only email channels can be polled")
        return poll_email_channel(db, channel)

    @staticmethod
    def register_telegram_webhook(db: Session, tenant_id, channel_id, url: str) -> dict:
        channel = ChannelsManager.get(db, tenant_id, channel_id)
        if channel.channel_type != ChannelType.telegram:
            raise HTTPException(status_code=400, detail="Channel is not a telegram channel")
        config = dict(channel.config or {})
        secret = config.get("webhook_secret") or secrets.token_urlsafe(32)
        result = get_adapter(ChannelType.telegram).set_webhook(channel, url, secret_token=secret)
        config["webhook_secret"] = secret
        config["webhook_url"] = url
        channel.config = config
        db.commit()
        return result


channels = ChannelsManager()

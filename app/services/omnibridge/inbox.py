"""Read side of the unified inbox."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.omnibridge.enums import ChannelType, MessageDirection, MessagePriority
from app.models.omnibridge.inbox import InboxMessage
from app.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from app.services.response import ListResponseMixin


class InboxManager(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
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
        order_by: str = "received_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[InboxMessage]:
        query = db.query(InboxMessage).filter(InboxMessage.tenant_id == coerce_uuid(tenant_id))
        if channel_type:
            query = query.filter(
                InboxMessage.channel_type == validate_enum(channel_type, ChannelType, "channel_type")
            )
        if channel_id:
            query = query.filter(InboxMessage.channel_id == coerce_uuid(channel_id))
        if direction:
            query = query.filter(InboxMessage.direction == validate_enum(direction, MessageDirection, "direction"))
        if priority:
            query = query.filter(InboxMessage.priority == validate_enum(priority, MessagePriority, "priority"))
        if is_read is not None:
            query = query.filter(InboxMessage.is_read.is_(is_read))
        if is_processed is not None:
            query = query.filter(InboxMessage.is_processed.is_(is_processed))
        if is_archived is not None:
            query = query.filter(InboxMessage.is_archived.is_(is_archived))
        if thread_id:
            query = query.filter(InboxMessage.thread_id == thread_id)
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    InboxMessage.subject.ilike(like),
                    InboxMessage.body_text.ilike(like),
                    InboxMessage.from_address.ilike(like),
                )
            )
        results = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "received_at": InboxMessage.received_at,
                "priority": InboxMessage.priority,
                "created_at": InboxMessage.created_at,
            },
        )
        rows = apply_pagination(results, limit, offset).all()
        # Tags live in a JSON column, so the tag filter runs in Python.
        if tag:
            rows = [row for row in rows if tag in (row.tags or [])]
        return rows

    @staticmethod
    def get(db: Session, tenant_id, message_id) -> InboxMessage:
        message = db.get(InboxMessage, coerce_uuid(message_id))
        if not message or message.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Message not found")
        return message

    @staticmethod
    def mark_read(db: Session, tenant_id, message_id, is_read: bool = True) -> InboxMessage:
        message = InboxManager.get(db, tenant_id, message_id)
        message.is_read = is_read
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def mark_responded(db: Session, tenant_id, message_id) -> InboxMessage:
        """Record a human response; stops any pending deadline escalation."""
        message = InboxManager.get(db, tenant_id, message_id)
        message.responded_at = datetime.now(UTC)
        message.needs_response = False
        message.is_read = True
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def archive(db: Session, tenant_id, message_id) -> InboxMessage:
        message = InboxManager.get(db, tenant_id, message_id)
        message.is_archived = True
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def unread_count(db: Session, tenant_id) -> int:
        return (
            db.query(InboxMessage)
            .filter(InboxMessage.tenant_id == coerce_uuid(tenant_id))
            .filter(InboxMessage.direction == MessageDirection.inbound)
            .filter(InboxMessage.is_read.is_(False))
            .filter(InboxMessage.is_archived.is_(False))
            .count()
        )

    @staticmethod
    def chat_session_messages(
        db: Session, tenant_id, channel_id, session_id: str, after: datetime | None = None, limit: int = 100
    ) -> list[dict]:
        """Both directions of a chat session, oldest first, for widget polling."""
        query = (
            db.query(InboxMessage)
            .filter(InboxMessage.tenant_id == coerce_uuid(tenant_id))
            .filter(InboxMessage.channel_id == coerce_uuid(channel_id))
            .filter(InboxMessage.channel_type == ChannelType.chat)
            .filter(InboxMessage.thread_id == session_id)
        )
        if after is not None:
            query = query.filter(InboxMessage.received_at > after)
        rows = query.order_by(InboxMessage.received_at.asc()).limit(limit).all()
        return [
            {
                "id": row.id,
                "direction": row.direction.value,
                "body": row.body_text or "",
                "sender_name": row.from_name,
                "created_at": row.received_at,
            }
            for row in rows
        ]


inbox = InboxManager()

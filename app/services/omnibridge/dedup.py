"""Duplicate detection for inbound messages.

Providers redeliver (Telegram retries unanswered webhooks, IMAP cursors can
rewind), so every inbound message gets a deterministic key that is unique per
tenant and channel type.
"""

import hashlib
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.omnibridge.enums import ChannelType
from app.models.omnibridge.inbox import InboxMessage


def build_inbound_dedupe_key(
    channel_type: ChannelType,
    channel_id,
    from_address: str | None,
    subject: str | None,
    body: str | None,
    received_at: datetime | None,
    external_id: str | None = None,
) -> str:
    """Return the dedupe key for a message.

    The provider id is used as is when present (scoped by channel so two
    mailboxes of one tenant cannot collide); otherwise a SHA-256 over the
    sender, subject, body and received time with microseconds dropped.
    """
    if external_id:
        return f"{channel_id}:{external_id}"[:200]
    address = (from_address or "").strip()
    if channel_type == ChannelType.email:
        address = address.lower()
    received_at_str = ""
    if received_at:
        received_at_str = received_at.replace(microsecond=0).isoformat()
    key = "|".join(
        [
            channel_type.value,
            str(channel_id),
            address,
            subject or "",
            body or "",
            received_at_str,
        ]
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def find_duplicate_inbound_message(
    db: Session,
    tenant_id,
    channel_type: ChannelType,
    dedupe_key: str,
) -> InboxMessage | None:
    return (
        db.query(InboxMessage)
        .filter(InboxMessage.tenant_id == tenant_id)
        .filter(InboxMessage.channel_type == channel_type)
        .filter(InboxMessage.dedupe_key == dedupe_key)
        .first()
    )

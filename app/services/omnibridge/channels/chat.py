"""Web chat adapter.

Visitors post messages over HTTP and poll for replies, so sending a reply
just stores an outbound message on the session thread.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType, MessageDirection
from app.models.omnibridge.inbox import InboxMessage
from app.schemas.omnibridge.inbound import ChatInboundPayload, InboundMessage
from app.services.omnibridge.channels.base import ChannelAdapter, OutboundMessage, SendResult
from app.services.omnibridge.dedup import build_inbound_dedupe_key


class ChatAdapter(ChannelAdapter):
    channel_type = ChannelType.chat

    def normalize(self, channel: Channel, payload: Any) -> InboundMessage | None:
        parsed = payload if isinstance(payload, ChatInboundPayload) else ChatInboundPayload.model_validate(payload)
        text = parsed.text.strip()
        if not text:
            return None
        return InboundMessage(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=ChannelType.chat,
            external_id=f"{parsed.session_id}:{parsed.client_message_id}" if parsed.client_message_id else None,
            thread_id=parsed.session_id,
            from_address=parsed.session_id,
            from_name=parsed.visitor_name,
            body_text=text,
            received_at=datetime.now(UTC),
            metadata={
                "session_id": parsed.session_id,
                "visitor_email": parsed.visitor_email,
                "page_url": parsed.page_url,
            },
        )

    def send(self, db: Session, channel: Channel, outbound: OutboundMessage) -> SendResult:
        session_id = (outbound.options or {}).get("session_id") or outbound.recipient
        now = datetime.now(UTC)
        message_id = uuid.uuid4()
        message = InboxMessage(
            id=message_id,
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=ChannelType.chat,
            direction=MessageDirection.outbound,
            dedupe_key=build_inbound_dedupe_key(
                ChannelType.chat, channel.id, None, None, None, None, external_id=f"out:{message_id}"
            ),
            thread_id=session_id,
            to_address=outbound.recipient,
            from_name=(outbound.options or {}).get("sender_name"),
            subject=outbound.subject,
            body_text=outbound.body,
            is_read=True,
            is_processed=True,
            needs_response=False,
            received_at=now,
        )
        db.add(message)
        db.flush()
        return SendResult(provider_message_id=str(message.id))

"""Channel adapter contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.inbound import InboundMessage


@dataclass(frozen=True)
class OutboundMessage:
    recipient: str
    body: str
    subject: str | None = None
    # Adapter specific hints: in_reply_to, references, auto_submitted, reply_to_message_id.
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str | None = None
    raw: dict[str, Any] | None = None


class ChannelAdapter:
    channel_type: ChannelType

    def normalize(self, channel: Channel, payload: Any) -> InboundMessage | None:
        """Turn a provider payload into an InboundMessage, or None when it carries no message."""
        raise NotImplementedError

    def send(self, db: Session, channel: Channel, outbound: OutboundMessage) -> SendResult:
        raise NotImplementedError

    def self_addresses(self, channel: Channel) -> set[str]:
        """Addresses the channel itself sends from; used to drop echoes."""
        return set()


def channel_config(channel: Channel) -> dict:
    return channel.config if isinstance(channel.config, dict) else {}

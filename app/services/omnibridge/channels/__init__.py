"""Channel adapter registry."""

from app.models.omnibridge.enums import ChannelType
from app.services.omnibridge.channels.base import ChannelAdapter, OutboundMessage, SendResult
from app.services.omnibridge.channels.chat import ChatAdapter
from app.services.omnibridge.channels.email import EmailAdapter
from app.services.omnibridge.channels.telegram import TelegramAdapter
from app.services.omnibridge.errors import OmniBridgeConfigError

_ADAPTERS: dict[ChannelType, ChannelAdapter] = {
    ChannelType.email: EmailAdapter(),
    ChannelType.telegram: TelegramAdapter(),
    ChannelType.chat: ChatAdapter(),
}


def get_adapter(channel_type: ChannelType | str) -> ChannelAdapter:
    try:
        key = channel_type if isinstance(channel_type, ChannelType) else ChannelType(str(channel_type))
    except ValueError as exc:
        raise OmniBridgeConfigError(code="unknown_channel_type", detail=f"Unknown channel type: {channel_type}") from exc
    adapter = _ADAPTERS.get(key)
    if adapter is None:
        raise OmniBridgeConfigError(code="unsupported_channel_type", detail=f"No adapter for channel type: {key.value}")
    return adapter


__all__ = ["ChannelAdapter", "OutboundMessage", "SendResult", "get_adapter"]

"""Telegram Bot API adapter."""

from __future__ import annotations

import hmac
import logging
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.inbound import InboundMessage
from app.services.omnibridge.channels.base import ChannelAdapter, OutboundMessage, SendResult, channel_config
from app.services.omnibridge.errors import (
    OmniBridgeConfigError,
    PermanentOutboundError,
    TransientOutboundError,
)

logger = logging.getLogger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
_MESSAGE_KEYS = ("message", "edited_message", "channel_post", "edited_channel_post")


def chunk_text(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    if not text:
        return [""]
    return [text[i : i + limit] for i in range(0, len(text), limit)]


def _bot_token(channel: Channel) -> str:
    token = channel_config(channel).get("bot_token")
    if not isinstance(token, str) or not token:
        raise OmniBridgeConfigError(
            code="telegram_token_missing",
            detail=f"Channel {channel.id} has no bot_token configured",
        )
    return token


def _api_url(token: str, method: str) -> str:
    return f"{settings.telegram_api_base_url.rstrip('/')}/bot{token}/{method}"


def verify_secret(channel: Channel, header_value: str | None) -> bool:
    """Check the webhook secret token; channels without a secret accept every call."""
    expected = channel_config(channel).get("webhook_secret")
    if not expected:
        return True
    if not header_value:
        return False
    return hmac.compare_digest(str(expected), header_value)


def _sender_name(user: dict) -> str | None:
    parts = [user.get("first_name"), user.get("last_name")]
    name = " ".join(part for part in parts if part)
    return name or user.get("username") or None


def _attachments(message: dict) -> list[dict[str, Any]]:
    attachments: list[dict[str, Any]] = []
    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        largest = photos[-1]
        attachments.append({"type": "photo", "file_id": largest.get("file_id"), "file_size": largest.get("file_size")})
    for kind in ("document", "audio", "video", "voice", "sticker"):
        item = message.get(kind)
        if isinstance(item, dict):
            attachments.append(
                {
                    "type": kind,
                    "file_id": item.get("file_id"),
                    "file_name": item.get("file_name"),
                    "mime_type": item.get("mime_type"),
                    "file_size": item.get("file_size"),
                }
            )
    return attachments


class TelegramAdapter(ChannelAdapter):
    channel_type = ChannelType.telegram

    def normalize(self, channel: Channel, payload: Any) -> InboundMessage | None:
        if not isinstance(payload, dict):
            return None
        update_id = payload.get("update_id")
        message = None
        update_kind = None
        for key in _MESSAGE_KEYS:
            if isinstance(payload.get(key), dict):
                message = payload[key]
                update_kind = key
                break

        if message is None and isinstance(payload.get("callback_query"), dict):
            callback = payload["callback_query"]
            sender = callback.get("from") or {}
            origin = callback.get("message") or {}
            chat = origin.get("chat") or {}
            chat_id = chat.get("id") or sender.get("id")
            if chat_id is None:
                return None
            return InboundMessage(
                tenant_id=channel.tenant_id,
                channel_id=channel.id,
                channel_type=ChannelType.telegram,
                external_id=f"callback:{callback.get('id')}",
                thread_id=str(chat_id),
                from_address=str(chat_id),
                from_name=_sender_name(sender),
                body_text=callback.get("data") or "",
                received_at=datetime.now(UTC),
                metadata={"update_id": update_id, "update_kind": "callback_query", "user_id": sender.get("id")},
            )

        if message is None:
            return None
        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        chat_id = chat.get("id")
        if chat_id is None:
            return None
        if sender.get("is_bot"):
            return None
        text = message.get("text") or message.get("caption") or ""
        attachments = _attachments(message)
        if not text and not attachments:
            return None
        sent_at = message.get("date")
        received_at = datetime.fromtimestamp(int(sent_at), tz=UTC) if sent_at else None
        external_id = f"{chat_id}:{message.get('message_id')}"
        if update_kind and update_kind.startswith("edited_"):
            external_id = f"{external_id}:edit:{message.get('edit_date') or update_id}"
        return InboundMessage(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=ChannelType.telegram,
            external_id=external_id,
            thread_id=str(chat_id),
            from_address=str(chat_id),
            from_name=_sender_name(sender) or chat.get("title"),
            body_text=text,
            attachments=attachments,
            received_at=received_at,
            metadata={
                "update_id": update_id,
                "update_kind": update_kind,
                "chat_type": chat.get("type"),
                "user_id": sender.get("id"),
                "username": sender.get("username"),
                "telegram_message_id": message.get("message_id"),
            },
        )

    def send(self, db: Session, channel: Channel, outbound: OutboundMessage) -> SendResult:
        token = _bot_token(channel)
        url = _api_url(token, "sendMessage")
        reply_to = (outbound.options or {}).get("reply_to_message_id")
        text = outbound.body
        if outbound.subject and not (outbound.options or {}).get("omit_subject"):
            text = f"{outbound.subject}\n\n{text}" if text else outbound.subject
        message_ids: list[str] = []
        for index, chunk in enumerate(chunk_text(text)):
            payload: dict[str, Any] = {"chat_id": outbound.recipient, "text": chunk}
            if reply_to and index == 0:
                payload["reply_to_message_id"] = reply_to
            try:
                response = httpx.post(url, json=payload, timeout=settings.telegram_timeout)
            except httpx.TransportError as exc:
                raise TransientOutboundError(f"Telegram transport error: {exc}") from exc
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientOutboundError(f"Telegram API {response.status_code}: {response.text[:200]}")
            if response.status_code >= 400:
                raise PermanentOutboundError(f"Telegram API {response.status_code}: {response.text[:200]}")
            data = response.json()
            if not data.get("ok"):
                raise PermanentOutboundError(f"Telegram API error: {data.get('description')}")
            result = data.get("result") or {}
            if result.get("message_id") is not None:
                message_ids.append(str(result["message_id"]))
        return SendResult(provider_message_id=",".join(message_ids) or None, raw={"chunks": len(message_ids)})

    def set_webhook(self, channel: Channel, url: str, secret_token: str | None = None) -> dict:
        """Register the bot webhook; returns the Bot API response body."""
        token = _bot_token(channel)
        payload: dict[str, Any] = {"url": url, "allowed_updates": ["message", "edited_message", "callback_query"]}
        if secret_token:
            payload["secret_token"] = secret_token
        response = httpx.post(_api_url(token, "setWebhook"), json=payload, timeout=settings.telegram_timeout)
        response.raise_for_status()
        data = response.json()
        logger.info("telegram_webhook_registered channel_id=%s ok=%s", channel.id, data.get("ok"))
        return data

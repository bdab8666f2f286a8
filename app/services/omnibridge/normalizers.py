"""Address, identifier and priority normalization for inbound messages."""

import hashlib
import re

from app.models.omnibridge.enums import ChannelType, MessagePriority

_HIGH_PRIORITY_WORDS = ("urgent", "critical", "emergency", "asap", "urgente", "crítico", "emergência")
_LOW_PRIORITY_WORDS = ("fyi", "info", "informação", "newsletter", "update", "atualização")


def _normalize_external_id(raw_id: str | None) -> str | None:
    """Strip an external id, hashing it when it is longer than 120 characters."""
    if not raw_id:
        return None
    candidate = str(raw_id).strip()
    if not candidate:
        return None
    if len(candidate) > 120:
        return hashlib.sha256(candidate.encode("utf-8")).hexdigest()
    return candidate


def _normalize_email_message_id(raw_id: str | None) -> str | None:
    if not raw_id:
        return None
    cleaned = raw_id.strip().strip("<>").strip()
    return _normalize_external_id(cleaned)


def _normalize_email_address(address: str | None) -> str | None:
    if not address:
        return None
    candidate = address.strip().lower()
    return candidate or None


def _normalize_phone_address(value: str | None) -> str | None:
    if not value:
        return None
    digits = "".join(ch for ch in value if ch.isdigit())
    if not digits:
        return None
    return f"+{digits}"


def normalize_sender_address(channel_type: ChannelType, address: str | None) -> str | None:
    if channel_type == ChannelType.email:
        return _normalize_email_address(address)
    if channel_type in (ChannelType.sms, ChannelType.whatsapp):
        return _normalize_phone_address(address)
    if not address:
        return None
    candidate = str(address).strip()
    return candidate or None


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text) is not None


def detect_priority(subject: str | None, body: str | None) -> MessagePriority:
    """Guess a priority from urgency and low-importance words.

    An urgency word in the subject line is treated as urgent, in the body as high.
    """
    subject_text = (subject or "").lower()
    body_text = (body or "").lower()
    if any(_contains_word(subject_text, word) for word in _HIGH_PRIORITY_WORDS):
        return MessagePriority.urgent
    if any(_contains_word(body_text, word) for word in _HIGH_PRIORITY_WORDS):
        return MessagePriority.high
    combined = f"{subject_text} {body_text}"
    if any(_contains_word(combined, word) for word in _LOW_PRIORITY_WORDS):
        return MessagePriority.low
    return MessagePriority.medium

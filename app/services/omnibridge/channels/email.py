"""Email adapter: RFC 822 parsing for inbound mail and SMTP for replies."""

from __future__ import annotations

import email
from datetime import UTC
from email.header import decode_header
from email.message import Message
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import Any

from sqlalchemy.orm import Session

from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.inbound import EmailWebhookPayload, InboundMessage
from app.services import email as email_service
from app.services.omnibridge.channels.base import ChannelAdapter, OutboundMessage, SendResult, channel_config
from app.services.omnibridge.normalizers import _normalize_email_address, _normalize_email_message_id

_AUTO_SUBMITTED_PRECEDENCE = {"bulk", "list", "junk", "auto_reply"}
MAX_SUBJECT_LENGTH = 500
MAX_NAME_LENGTH = 255
# Carries the automation depth across mailboxes so forwards cannot loop forever.
DEPTH_HEADER = "X-OmniBridge-Automation-Depth"


def _decode_header(value: str | None) -> str | None:
    if not value:
        return None
    decoded = ""
    for fragment, encoding in decode_header(value):
        if isinstance(fragment, bytes):
            try:
                decoded += fragment.decode(encoding or "utf-8", errors="replace")
            except LookupError:
                decoded += fragment.decode("utf-8", errors="replace")
        else:
            decoded += fragment
    return decoded.strip()


def _payload_to_bytes(value: object | None) -> bytes:
    if isinstance(value, bytes):
        return value
    if value is None:
        return b""
    return str(value).encode("utf-8", errors="replace")


def _decode_part(part: Message) -> str:
    payload = _payload_to_bytes(part.get_payload(decode=True))
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _extract_bodies(msg: Message) -> tuple[str | None, str | None]:
    text_body = None
    html_body = None
    if msg.is_multipart():
        for part in msg.walk():
            if part.is_multipart():
                continue
            disposition = (part.get("Content-Disposition") or "").lower()
            if "attachment" in disposition:
                continue
            content_type = part.get_content_type()
            if content_type == "text/plain" and text_body is None:
                text_body = _decode_part(part)
            elif content_type == "text/html" and html_body is None:
                html_body = _decode_part(part)
    else:
        content = _decode_part(msg)
        if msg.get_content_type() == "text/html":
            html_body = content
        else:
            text_body = content
    return text_body, html_body


def _extract_attachments(msg: Message) -> list[dict[str, Any]]:
    """Attachment metadata only; content stays with the mail server."""
    attachments: list[dict[str, Any]] = []
    if not msg.is_multipart():
        return attachments
    for part in msg.walk():
        if part.is_multipart():
            continue
        disposition = (part.get("Content-Disposition") or "").lower()
        filename = part.get_filename()
        if "attachment" not in disposition and not filename:
            continue
        payload = _payload_to_bytes(part.get_payload(decode=True))
        attachments.append(
            {
                "file_name": _decode_header(filename) if filename else None,
                "mime_type": part.get_content_type(),
                "file_size": len(payload),
                "content_id": part.get("Content-ID"),
            }
        )
    return attachments


def is_auto_submitted(headers: dict[str, str]) -> bool:
    """RFC 3834 style detection of automatic mail (bounces, vacation replies, lists)."""
    lowered = {key.lower(): (value or "").strip().lower() for key, value in headers.items()}
    auto_submitted = lowered.get("auto-submitted")
    if auto_submitted and auto_submitted != "no":
        return True
    if lowered.get("precedence") in _AUTO_SUBMITTED_PRECEDENCE:
        return True
    return "x-autoreply" in lowered or "x-autorespond" in lowered


def _clip(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else value


def _parse_date(value: str | None):
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _depth(value: str | None) -> int:
    try:
        return int(str(value).strip()) if value else 0
    except ValueError:
        return 0


def _thread_id(message_id: str | None, in_reply_to: str | None, references: str | None) -> str | None:
    """Root of the reference chain, so replies share the original's thread."""
    if references:
        first = references.split()[0]
        return _normalize_email_message_id(first)
    if in_reply_to:
        return _normalize_email_message_id(in_reply_to)
    return _normalize_email_message_id(message_id)


class EmailAdapter(ChannelAdapter):
    channel_type = ChannelType.email

    def self_addresses(self, channel: Channel) -> set[str]:
        config = channel_config(channel)
        addresses: set[str] = set()
        for block_name in ("imap", "smtp"):
            block = config.get(block_name) if isinstance(config.get(block_name), dict) else {}
            for key in ("username", "from_email", "email"):
                normalized = _normalize_email_address(block.get(key)) if isinstance(block.get(key), str) else None
                if normalized:
                    addresses.add(normalized)
        for key in ("address", "from_email"):
            value = config.get(key)
            normalized = _normalize_email_address(value) if isinstance(value, str) else None
            if normalized:
                addresses.add(normalized)
        return addresses

    def parse_raw(self, channel: Channel, raw: bytes, uid: str | None = None) -> InboundMessage | None:
        msg = email.message_from_bytes(raw)
        from_name, from_addr = parseaddr(msg.get("From") or "")
        if not from_addr:
            return None
        headers = {key: str(value) for key, value in msg.items()}
        subject = _decode_header(msg.get("Subject"))
        if subject and len(subject) > MAX_SUBJECT_LENGTH:
            subject = subject[:MAX_SUBJECT_LENGTH]
        text_body, html_body = _extract_bodies(msg)
        to_addrs = [addr for _, addr in getaddresses(msg.get_all("To") or []) if addr]
        message_id = msg.get("Message-ID")
        in_reply_to = msg.get("In-Reply-To")
        references = msg.get("References")
        return InboundMessage(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=ChannelType.email,
            external_id=_normalize_email_message_id(message_id),
            thread_id=_thread_id(message_id, in_reply_to, references),
            from_address=from_addr,
            from_name=_clip(_decode_header(from_name), MAX_NAME_LENGTH) or None,
            to_address=_clip(to_addrs[0], MAX_NAME_LENGTH) if to_addrs else None,
            subject=subject,
            body_text=(text_body or "").strip() or None,
            body_html=html_body,
            attachments=_extract_attachments(msg),
            received_at=_parse_date(msg.get("Date")),
            metadata={
                "source": "imap" if uid else "raw",
                "uid": uid,
                "rfc_message_id": message_id,
                "in_reply_to": in_reply_to,
                "references": references,
                "to": to_addrs,
                "cc": [addr for _, addr in getaddresses(msg.get_all("Cc") or []) if addr],
                "auto_submitted": is_auto_submitted(headers),
                "automation_depth": _depth(msg.get(DEPTH_HEADER)),
            },
        )

    def normalize(self, channel: Channel, payload: Any) -> InboundMessage | None:
        if isinstance(payload, bytes):
            return self.parse_raw(channel, payload)
        parsed = payload if isinstance(payload, EmailWebhookPayload) else EmailWebhookPayload.model_validate(payload)
        return InboundMessage(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_type=ChannelType.email,
            external_id=_normalize_email_message_id(parsed.message_id),
            thread_id=_thread_id(parsed.message_id, parsed.in_reply_to, parsed.references),
            from_address=parsed.from_address,
            from_name=parsed.from_name,
            to_address=parsed.to_address,
            subject=parsed.subject[:MAX_SUBJECT_LENGTH] if parsed.subject else None,
            body_text=parsed.body_text,
            body_html=parsed.body_html,
            attachments=parsed.attachments,
            received_at=parsed.received_at,
            metadata={
                "source": "webhook",
                "rfc_message_id": parsed.message_id,
                "in_reply_to": parsed.in_reply_to,
                "references": parsed.references,
                "auto_submitted": is_auto_submitted(parsed.headers),
            },
        )

    def send(self, db: Session, channel: Channel, outbound: OutboundMessage) -> SendResult:
        config = channel_config(channel)
        smtp_config = dict(config.get("smtp") or {}) if isinstance(config.get("smtp"), dict) else {}
        if not smtp_config.get("host"):
            smtp_config = {**email_service.default_smtp_config(), **smtp_config}
        options = outbound.options or {}
        extra_headers = {}
        if options.get("auto_submitted"):
            extra_headers["Auto-Submitted"] = "auto-replied"
        if options.get("automation_depth"):
            extra_headers[DEPTH_HEADER] = str(options["automation_depth"])
        message_id = email_service.send_email_with_config(
            smtp_config,
            outbound.recipient,
            outbound.subject or "(no subject)",
            outbound.body,
            in_reply_to=options.get("in_reply_to"),
            references=options.get("references"),
            extra_headers=extra_headers,
        )
        return SendResult(provider_message_id=message_id)

"""IMAP polling for email channels."""

from __future__ import annotations

import imaplib
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import ChannelHealth, ChannelType
from app.services.omnibridge.channels import get_adapter
from app.services.omnibridge.channels.email import EmailAdapter
from app.services.omnibridge.errors import OmniBridgeConfigError
from app.services.omnibridge.inbound import receive_inbound_message
from app.services.omnibridge.normalizers import _normalize_email_address
from app.services.omnibridge.observability import EMAIL_POLLS

logger = get_logger(__name__)

CURSOR_KEY = "imap_last_uid"
_ERROR_THRESHOLD = 3


def _imap_settings(channel: Channel) -> dict:
    config = channel.config if isinstance(channel.config, dict) else {}
    imap_config = config.get("imap")
    if not isinstance(imap_config, dict):
        raise OmniBridgeConfigError(code="imap_config_missing", detail=f"Channel {channel.id} has no IMAP config")
    host = imap_config.get("host")
    username = imap_config.get("username")
    password = imap_config.get("password")
    if not host or not isinstance(username, str) or not isinstance(password, str) or not username or not password:
        raise OmniBridgeConfigError(code="imap_config_incomplete", detail="IMAP config incomplete")
    return imap_config


def _connect(imap_config: dict) -> imaplib.IMAP4:
    host = str(imap_config["host"])
    port = int(imap_config.get("port") or 993)
    timeout = settings.email_poll_connect_timeout
    if imap_config.get("use_ssl", True):
        client = imaplib.IMAP4_SSL(host, port, timeout=timeout)
    else:
        client = imaplib.IMAP4(host, port, timeout=timeout)
    client.login(imap_config["username"], imap_config["password"])
    return client


def _search_uids(client: imaplib.IMAP4, last_uid: int | None) -> list[bytes]:
    if last_uid:
        _, data = client.uid("search", None, f"UID {last_uid + 1}:*")
    else:
        since = (datetime.now(UTC) - timedelta(days=settings.email_poll_lookback_days)).strftime("%d-%b-%Y")
        _, data = client.uid("search", None, "UNSEEN", "SINCE", since)
    uids = data[0].split() if data and data[0] else []
    # "N:*" always returns the highest UID even when it is below N.
    if last_uid:
        uids = [uid for uid in uids if int(uid) > last_uid]
    return uids[: settings.email_poll_batch_limit]


def _save_cursor(db: Session, channel: Channel, uid: int) -> None:
    metadata = dict(channel.metadata_ or {})
    metadata[CURSOR_KEY] = uid
    channel.metadata_ = metadata
    db.commit()


def _record_health(db: Session, channel: Channel, error: Exception | None) -> None:
    now = datetime.now(UTC)
    channel.last_health_check = now
    if error is None:
        channel.health_status = ChannelHealth.healthy
        channel.error_count = 0
        channel.last_error = None
        channel.last_sync_at = now
    else:
        channel.error_count = (channel.error_count or 0) + 1
        channel.last_error = str(error)[:2000]
        channel.health_status = (
            ChannelHealth.error if channel.error_count >= _ERROR_THRESHOLD else ChannelHealth.degraded
        )
    db.commit()


def poll_email_channel(db: Session, channel: Channel) -> dict:
    """Fetch new mail for one channel and route each message.

    Returns counts of processed, duplicate and skipped messages.
    """
    adapter: EmailAdapter = get_adapter(ChannelType.email)
    counts = {"processed": 0, "duplicate": 0, "skipped": 0}
    try:
        imap_config = _imap_settings(channel)
        self_addresses = adapter.self_addresses(channel)
        last_uid = (channel.metadata_ or {}).get(CURSOR_KEY)
        last_uid = int(last_uid) if last_uid else None
        logger.info(
            "email_poll_start channel_id=%s host=%s mailbox=%s last_uid=%s",
            channel.id,
            imap_config.get("host"),
            imap_config.get("mailbox") or "INBOX",
            last_uid,
        )

        client = _connect(imap_config)
        try:
            client.select(imap_config.get("mailbox") or "INBOX")
            for uid in _search_uids(client, last_uid):
                uid_str = uid.decode() if isinstance(uid, bytes) else str(uid)
                _, msg_data = client.uid("fetch", uid_str, "(RFC822)")
                raw = msg_data[0][1] if msg_data and isinstance(msg_data[0], tuple) else None
                try:
                    inbound = adapter.parse_raw(channel, raw, uid=uid_str) if raw else None
                except ValueError as exc:
                    # An unparseable message must not hold the cursor back.
                    logger.warning("email_parse_failed channel_id=%s uid=%s error=%s", channel.id, uid_str, exc)
                    inbound = None
                if inbound is None or _normalize_email_address(inbound.from_address) in self_addresses:
                    counts["skipped"] += 1
                else:
                    result = receive_inbound_message(db, inbound)
                    counts[result.status] = counts.get(result.status, 0) + 1
                _save_cursor(db, channel, int(uid_str))
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.debug("imap_logout_failed channel_id=%s", channel.id)
    except Exception as exc:
        db.rollback()
        EMAIL_POLLS.labels(status="error").inc()
        logger.warning("email_poll_failed channel_id=%s error=%s", channel.id, exc)
        _record_health(db, channel, exc)
        raise

    _record_health(db, channel, None)
    EMAIL_POLLS.labels(status="ok").inc()
    logger.info("email_poll_done channel_id=%s counts=%s", channel.id, counts)
    return counts


def poll_all_email_channels(db: Session) -> dict[str, dict]:
    """Poll every active, monitoring email channel; one failure never stops the rest."""
    channels = (
        db.query(Channel)
        .filter(Channel.channel_type == ChannelType.email)
        .filter(Channel.is_active.is_(True))
        .filter(Channel.is_monitoring.is_(True))
        .order_by(Channel.created_at.asc())
        .all()
    )
    results: dict[str, dict] = {}
    for channel in channels:
        try:
            results[str(channel.id)] = poll_email_channel(db, channel)
        except Exception as exc:
            results[str(channel.id)] = {"error": str(exc)}
    return results

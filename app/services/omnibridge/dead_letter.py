"""Persist inbound payloads that could not be processed."""

import logging
import traceback

from app.db import SessionLocal
from app.models.omnibridge.dead_letter import WebhookDeadLetter
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)


def write_dead_letter(
    channel_type: str,
    raw_payload: dict | str | bytes,
    error: str | Exception,
    tenant_id: str | None = None,
    channel_id: str | None = None,
    trace_id: str | None = None,
    external_id: str | None = None,
    session_factory=SessionLocal,
) -> None:
    """Store a failed payload using a fresh session.

    The caller's session may be dirty after the failure, so this never
    reuses it.
    """
    if isinstance(error, Exception):
        # format_exc() would read sys.exc_info(), which may hold a retry error.
        error_str = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    else:
        error_str = str(error)

    if isinstance(raw_payload, bytes):
        raw_payload = {"raw_text": raw_payload[:8000].decode("utf-8", errors="replace")}
    if isinstance(raw_payload, str):
        raw_payload = {"raw_text": raw_payload[:8000]}

    session = session_factory()
    try:
        dead_letter = WebhookDeadLetter(
            tenant_id=coerce_uuid(tenant_id) if tenant_id else None,
            channel_id=coerce_uuid(channel_id) if channel_id else None,
            channel_type=channel_type,
            trace_id=trace_id,
            external_id=external_id,
            raw_payload=raw_payload,
            error=error_str[:4000] if error_str else None,
        )
        session.add(dead_letter)
        session.commit()
        logger.info(
            "webhook_dead_letter_written channel=%s trace_id=%s external_id=%s",
            channel_type,
            trace_id,
            external_id,
        )
    except Exception:
        session.rollback()
        logger.exception("webhook_dead_letter_write_failed channel=%s trace_id=%s", channel_type, trace_id)
    finally:
        session.close()

"""Celery tasks for webhook delivery and inbound provider callbacks."""

from app.celery_app import celery_app
from app.db import SessionLocal
from app.logging import get_logger
from app.models.omnibridge.channel import Channel
from app.services.common import coerce_uuid
from app.services.omnibridge.dead_letter import write_dead_letter
from app.services.omnibridge.errors import OmniBridgeNotFoundError
from app.services.omnibridge.inbound import process_provider_payload
from app.services.omnibridge.webhooks import deliver_webhook, retry_due_webhooks

logger = get_logger(__name__)

# Retry configuration for inbound callback processing
INBOUND_MAX_RETRIES = 5
INBOUND_RETRY_BASE_DELAY = 60  # seconds


@celery_app.task(name="app.tasks.webhooks.deliver_webhook")
def deliver_webhook_task(delivery_id: str):
    """One attempt; failed attempts are rescheduled on the row and picked up by the sweep."""
    session = SessionLocal()
    try:
        delivery = deliver_webhook(session, delivery_id)
        return delivery.status.value if delivery is not None else None
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.webhooks.retry_due_deliveries")
def retry_due_deliveries():
    session = SessionLocal()
    try:
        delivered = retry_due_webhooks(session)
        if delivered:
            logger.info("webhook_retry_sweep delivered=%s", delivered)
        return delivered
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(
    name="app.tasks.webhooks.process_inbound_webhook",
    bind=True,
    max_retries=INBOUND_MAX_RETRIES,
)
def process_inbound_webhook(self, channel_id: str, payload: dict, trace_id: str | None = None):
    session = SessionLocal()
    channel_type = "unknown"
    tenant_id = None
    try:
        channel = session.get(Channel, coerce_uuid(channel_id))
        if channel is None:
            raise OmniBridgeNotFoundError(code="channel_not_found", detail=f"Channel {channel_id} not found")
        channel_type = channel.channel_type.value
        tenant_id = str(channel.tenant_id)
        result = process_provider_payload(session, channel, payload)
        logger.info(
            "webhook_processed channel=%s trace_id=%s status=%s",
            channel_type,
            trace_id,
            result.status,
        )
        return result.status
    except Exception as exc:
        session.rollback()
        logger.exception(
            "inbound_webhook_processing_failed channel=%s trace_id=%s attempt=%s/%s error=%s",
            channel_type,
            trace_id,
            self.request.retries,
            INBOUND_MAX_RETRIES,
            exc,
        )
        try:
            raise self.retry(
                exc=exc,
                countdown=INBOUND_RETRY_BASE_DELAY * (2**self.request.retries),
            )
        except self.MaxRetriesExceededError:
            logger.error("inbound_webhook_retries_exhausted trace_id=%s writing dead letter", trace_id)
            write_dead_letter(
                channel_type=channel_type,
                raw_payload=payload,
                error=exc,
                tenant_id=tenant_id,
                channel_id=channel_id,
                trace_id=trace_id,
            )
    finally:
        session.close()

import hmac

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.config import settings
from app.logging import get_logger
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.inbound import EmailWebhookPayload, InboundResultRead
from app.services.omnibridge.channels.telegram import SECRET_HEADER, verify_secret
from app.services.omnibridge.context import set_trace_id
from app.services.omnibridge.dead_letter import write_dead_letter
from app.services.omnibridge.errors import OmniBridgeAuthError
from app.services.omnibridge.inbound import InboundResult, get_channel_for_webhook, process_provider_payload

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["omnibridge-webhooks"])

EMAIL_SECRET_HEADER = "X-OmniBridge-Webhook-Secret"


def to_result_read(result: InboundResult) -> InboundResultRead:
    return InboundResultRead(
        status=result.status,
        message_id=result.message.id if result.message is not None else None,
        duplicate=result.duplicate,
        rules_executed=len(result.executions),
        reason=result.reason,
    )


def _queue_inbound(channel_id: str, payload: dict, trace_id: str) -> bool:
    from app.tasks.webhooks import process_inbound_webhook

    try:
        process_inbound_webhook.delay(channel_id, payload, trace_id)
    except Exception as exc:
        logger.warning("inbound_webhook_enqueue_failed channel_id=%s error=%s", channel_id, exc)
        return False
    return True


@router.post("/telegram/{channel_id}")
def telegram_webhook(
    channel_id: str,
    payload: dict = Body(...),
    secret_token: str | None = Header(default=None, alias=SECRET_HEADER),
    db: Session = Depends(get_db),
):
    channel = get_channel_for_webhook(db, channel_id, ChannelType.telegram)
    if not verify_secret(channel, secret_token):
        raise OmniBridgeAuthError(code="invalid_secret", detail="Telegram secret token mismatch")
    trace_id = set_trace_id()
    if settings.dispatch_deliveries and _queue_inbound(str(channel.id), payload, trace_id):
        return {"status": "queued", "trace_id": trace_id}
    try:
        result = process_provider_payload(db, channel, payload)
    except Exception as exc:
        # Telegram redelivers on non-2xx forever; park the update instead.
        db.rollback()
        logger.exception("telegram_webhook_failed channel_id=%s trace_id=%s", channel.id, trace_id)
        write_dead_letter(
            channel_type=ChannelType.telegram.value,
            raw_payload=payload,
            error=exc,
            tenant_id=str(channel.tenant_id),
            channel_id=str(channel.id),
            trace_id=trace_id,
            external_id=str(payload.get("update_id")) if payload.get("update_id") is not None else None,
        )
        return {"status": "failed", "trace_id": trace_id}
    return {"status": result.status, "trace_id": trace_id, "rules_executed": len(result.executions)}


@router.post("/email/{channel_id}", response_model=InboundResultRead)
def email_webhook(
    channel_id: str,
    payload: EmailWebhookPayload,
    secret: str | None = Header(default=None, alias=EMAIL_SECRET_HEADER),
    db: Session = Depends(get_db),
):
    channel = get_channel_for_webhook(db, channel_id, ChannelType.email)
    expected = (channel.config or {}).get("webhook_secret")
    if expected and not hmac.compare_digest(str(expected), secret or ""):
        raise OmniBridgeAuthError(code="invalid_secret", detail="Email webhook secret mismatch")
    set_trace_id()
    return to_result_read(process_provider_payload(db, channel, payload))

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.api.omnibridge.webhooks import to_result_read
from app.models.omnibridge.enums import ChannelType
from app.schemas.omnibridge.inbound import ChatInboundPayload, ChatMessageRead, InboundResultRead
from app.services.omnibridge.context import set_trace_id
from app.services.omnibridge.inbound import get_channel_for_webhook, process_provider_payload
from app.services.omnibridge.inbox import inbox

router = APIRouter(prefix="/chat", tags=["omnibridge-chat"])


@router.post(
    "/{channel_id}/messages",
    response_model=InboundResultRead,
    status_code=status.HTTP_202_ACCEPTED,
)
def post_chat_message(channel_id: str, payload: ChatInboundPayload, db: Session = Depends(get_db)):
    channel = get_channel_for_webhook(db, channel_id, ChannelType.chat)
    set_trace_id()
    return to_result_read(process_provider_payload(db, channel, payload))


@router.get("/{channel_id}/sessions/{session_id}/messages", response_model=list[ChatMessageRead])
def list_chat_messages(
    channel_id: str,
    session_id: str,
    after: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    channel = get_channel_for_webhook(db, channel_id, ChannelType.chat)
    return inbox.chat_session_messages(db, channel.tenant_id, channel.id, session_id, after=after, limit=limit)

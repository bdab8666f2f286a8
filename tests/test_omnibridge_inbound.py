"""Tests for the inbound routing pipeline."""

import uuid
from datetime import UTC, datetime

import pytest

from app.models.automation_rule import AutomationRuleLog
from app.models.omnibridge.enums import ChannelType, MessageDirection, MessagePriority
from app.models.omnibridge.inbox import InboxMessage
from app.models.omnibridge.outbox import OutboxMessage
from app.schemas.omnibridge.inbound import ChatInboundPayload
from app.services.omnibridge import outbox as outbox_service
from app.services.omnibridge.automation import automation_handler
from app.services.omnibridge.errors import OmniBridgeNotFoundError, OmniBridgeValidationError
from app.services.omnibridge.inbound import (
    get_channel_for_webhook,
    process_provider_payload,
    receive_inbound_message,
)
from app.services.omnibridge.inbox import inbox

# ============================================================================
# receive_inbound_message
# ============================================================================


class TestReceiveInbound:
    def test_stores_and_processes(self, db_session, email_channel, make_inbound):
        result = receive_inbound_message(
            db_session, make_inbound(email_channel, from_address=" Customer@Example.ORG ")
        )

        assert result.status == "processed"
        message = result.message
        assert message.from_address == "customer@example.org"
        assert message.direction == MessageDirection.inbound
        assert message.priority == MessagePriority.medium
        assert message.is_processed is True
        assert message.processed_at is not None
        assert message.metadata_["trace_id"]

    def test_explicit_priority_wins(self, db_session, email_channel, make_inbound):
        inbound = make_inbound(email_channel, subject="URGENT", priority=MessagePriority.low)
        assert receive_inbound_message(db_session, inbound).message.priority == MessagePriority.low

    def test_duplicate_external_id(self, db_session, email_channel, make_inbound):
        inbound = make_inbound(email_channel, external_id="<same@x.io>")
        first = receive_inbound_message(db_session, inbound)
        second = receive_inbound_message(db_session, inbound)
        assert second.status == "duplicate"
        assert second.duplicate is True
        assert second.message.id == first.message.id
        assert db_session.query(InboxMessage).count() == 1

    def test_duplicate_without_external_id_uses_content_hash(self, db_session, email_channel, make_inbound):
        received_at = datetime(2026, 2, 1, 9, 0, 0, 123, tzinfo=UTC)
        inbound = make_inbound(email_channel, external_id=None, received_at=received_at)
        receive_inbound_message(db_session, inbound)
        assert receive_inbound_message(db_session, inbound).status == "duplicate"

    def test_same_external_id_on_two_channels_is_not_a_duplicate(
        self, db_session, email_channel, make_inbound, tenant_id
    ):
        from app.models.omnibridge.channel import Channel

        second_mailbox = Channel(
            tenant_id=tenant_id, name="Sales", channel_type=ChannelType.email, config={"address": "sales@example.com"}
        )
        db_session.add(second_mailbox)
        db_session.commit()
        receive_inbound_message(db_session, make_inbound(email_channel, external_id="shared"))
        result = receive_inbound_message(db_session, make_inbound(second_mailbox, external_id="shared"))
        assert result.status == "processed"

    def test_self_message_skipped(self, db_session, email_channel, make_inbound):
        result = receive_inbound_message(db_session, make_inbound(email_channel, from_address="support@example.com"))
        assert result.status == "skipped"
        assert result.reason == "self_message"
        assert db_session.query(InboxMessage).count() == 0

    def test_inactive_channel_skipped(self, db_session, email_channel, make_inbound):
        email_channel.is_active = False
        db_session.commit()
        result = receive_inbound_message(db_session, make_inbound(email_channel))
        assert result.reason == "channel_inactive"

    def test_other_tenant_channel_rejected(self, db_session, email_channel, make_inbound, other_tenant_id):
        with pytest.raises(OmniBridgeNotFoundError):
            receive_inbound_message(db_session, make_inbound(email_channel, tenant_id=other_tenant_id))

    def test_channel_type_mismatch(self, db_session, email_channel, make_inbound):
        with pytest.raises(OmniBridgeValidationError):
            receive_inbound_message(db_session, make_inbound(email_channel, channel_type=ChannelType.telegram))

    def test_rules_run_before_return(self, db_session, email_channel, make_inbound, make_rule):
        rule = make_rule(
            [{"action_type": "tag", "params": {"tags": ["refund"]}}],
            triggers=[{"trigger_type": "keyword", "config": {"keywords": ["refund"]}}],
        )
        result = receive_inbound_message(db_session, make_inbound(email_channel, body_text="I want a refund"))
        assert len(result.executions) == 1
        assert result.message.tags == ["refund"]
        assert result.message.processing_rule_id == rule.id
        assert db_session.query(AutomationRuleLog).count() == 1

    def test_duplicate_does_not_rerun_rules(self, db_session, email_channel, make_inbound, make_rule):
        make_rule([{"action_type": "mark_read"}])
        inbound = make_inbound(email_channel, external_id="once")
        receive_inbound_message(db_session, inbound)
        receive_inbound_message(db_session, inbound)
        assert db_session.query(AutomationRuleLog).count() == 1

    def test_redelivery_finishes_failed_automation(
        self, db_session, email_channel, make_inbound, make_rule, monkeypatch
    ):
        make_rule([{"action_type": "tag", "params": {"tags": ["seen"]}}])
        real_handle = automation_handler.handle
        calls = []

        def _flaky_handle(db, message):
            calls.append(message.id)
            if len(calls) == 1:
                raise RuntimeError("rules store unavailable")
            return real_handle(db, message)

        monkeypatch.setattr(automation_handler, "handle", _flaky_handle)
        inbound = make_inbound(email_channel, external_id="retry-me")

        with pytest.raises(RuntimeError):
            receive_inbound_message(db_session, inbound)
        db_session.rollback()
        stored = db_session.query(InboxMessage).one()
        assert stored.is_processed is False

        retried = receive_inbound_message(db_session, inbound)

        assert retried.status == "processed"
        assert retried.message.id == stored.id
        assert retried.message.is_processed is True
        assert retried.message.tags == ["seen"]
        assert calls == [stored.id, stored.id]
        assert receive_inbound_message(db_session, inbound).status == "duplicate"
        assert len(calls) == 2


# ============================================================================
# Provider payloads and loops
# ============================================================================


class TestProviderPayloads:
    def test_telegram_update_without_message(self, db_session, telegram_channel):
        result = process_provider_payload(db_session, telegram_channel, {"update_id": 5, "poll": {}})
        assert result.status == "skipped"
        assert result.reason == "no_message"

    def test_telegram_update_is_routed(self, db_session, telegram_channel):
        update = {
            "update_id": 6,
            "message": {"message_id": 3, "chat": {"id": 77}, "from": {"id": 77}, "text": "hi"},
        }
        result = process_provider_payload(db_session, telegram_channel, update)
        assert result.status == "processed"
        assert result.message.dedupe_key == f"{telegram_channel.id}:77:3"

    def test_get_channel_for_webhook_checks_type(self, db_session, chat_channel):
        assert get_channel_for_webhook(db_session, chat_channel.id, ChannelType.chat).id == chat_channel.id
        with pytest.raises(OmniBridgeNotFoundError):
            get_channel_for_webhook(db_session, chat_channel.id, ChannelType.telegram)
        with pytest.raises(OmniBridgeNotFoundError):
            get_channel_for_webhook(db_session, uuid.uuid4(), ChannelType.chat)

    def test_auto_reply_to_auto_reply_is_suppressed(self, db_session, email_channel, make_inbound, make_rule):
        make_rule([{"action_type": "reply", "params": {"message": "Thanks, we got it"}}])
        inbound = make_inbound(email_channel, metadata={"auto_submitted": True})
        result = receive_inbound_message(db_session, inbound)
        assert result.executions[0].results[0]["data"] == {"skipped": "auto_submitted"}
        assert db_session.query(OutboxMessage).count() == 0


# ============================================================================
# Chat round trip
# ============================================================================


class TestChatRoundTrip:
    def test_visitor_message_and_auto_reply(self, db_session, chat_channel, make_rule, tenant_id):
        make_rule([{"action_type": "reply", "params": {"message": "Hi {{sender_name}}, an agent will join soon."}}])
        payload = ChatInboundPayload(session_id="sess-1", text="Hello?", visitor_name="Vic", client_message_id="c1")

        result = process_provider_payload(db_session, chat_channel, payload)
        outbox = db_session.query(OutboxMessage).one()
        outbox_service.process_outbox_item(db_session, str(outbox.id))

        assert result.message.thread_id == "sess-1"
        assert outbox.status == outbox_service.STATUS_SENT
        transcript = inbox.chat_session_messages(db_session, tenant_id, chat_channel.id, "sess-1")
        assert [(item["direction"], item["body"]) for item in transcript] == [
            ("inbound", "Hello?"),
            ("outbound", "Hi Vic, an agent will join soon."),
        ]

    def test_client_message_id_dedupes_resends(self, db_session, chat_channel):
        payload = ChatInboundPayload(session_id="sess-2", text="Hi", client_message_id="c9")
        process_provider_payload(db_session, chat_channel, payload)
        assert process_provider_payload(db_session, chat_channel, payload).status == "duplicate"

    def test_session_is_the_sender(self, db_session, chat_channel):
        payload = ChatInboundPayload(
            session_id="sess-4", text="Can someone call me?", visitor_name="Vic", visitor_email="vic@example.org"
        )

        message = process_provider_payload(db_session, chat_channel, payload).message

        assert message.from_address == "sess-4"
        assert message.from_name == "Vic"
        assert message.metadata_["visitor_email"] == "vic@example.org"

    def test_chat_outbound_is_not_automated(self, db_session, chat_channel, make_rule, tenant_id):
        make_rule([{"action_type": "reply", "params": {"message": "auto"}}])
        process_provider_payload(db_session, chat_channel, ChatInboundPayload(session_id="s3", text="Yo"))
        outbox = db_session.query(OutboxMessage).one()
        outbox_service.process_outbox_item(db_session, str(outbox.id))
        outbound = db_session.query(InboxMessage).filter(InboxMessage.direction == MessageDirection.outbound).one()
        assert outbound.is_processed is True
        assert db_session.query(OutboxMessage).count() == 1

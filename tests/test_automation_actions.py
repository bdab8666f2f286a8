"""Tests for the automation action executor."""

import uuid

import pytest

from app.models.omnibridge.enums import (
    ChannelType,
    MessageDirection,
    MessagePriority,
    NotificationChannel,
    NotificationStatus,
    WebhookDeliveryStatus,
)
from app.models.omnibridge.inbox import InboxMessage
from app.models.omnibridge.notification import Notification
from app.models.omnibridge.outbox import OutboxMessage
from app.models.omnibridge.response_template import ResponseTemplate
from app.models.omnibridge.ticket import Ticket
from app.models.omnibridge.webhook import WebhookDelivery
from app.services import automation_actions
from app.services.automation_actions import execute_actions, sort_actions
from app.services.omnibridge.dispatch import DELIVER_NOTIFICATION_TASK, pending_tasks

# ============================================================================
# Fixtures
# ============================================================================


def _store_message(db_session, channel, **overrides):
    data = {
        "tenant_id": channel.tenant_id,
        "channel_id": channel.id,
        "channel_type": channel.channel_type,
        "direction": MessageDirection.inbound,
        "external_id": uuid.uuid4().hex,
        "from_address": "customer@example.org",
        "from_name": "Casey Customer",
        "subject": "Broken router",
        "body_text": "My router keeps rebooting.",
        "priority": MessagePriority.medium,
        "tags": [],
        "metadata_": {},
    }
    data.update(overrides)
    data.setdefault("dedupe_key", f"{channel.id}:{data['external_id']}")
    message = InboxMessage(**data)
    db_session.add(message)
    db_session.commit()
    db_session.refresh(message)
    return message


@pytest.fixture()
def email_message(db_session, email_channel):
    return _store_message(
        db_session,
        email_channel,
        metadata_={"rfc_message_id": "<abc@example.org>", "references": "<root@example.org>"},
    )


# ============================================================================
# Ordering and failure isolation
# ============================================================================


class TestExecution:
    def test_sort_actions_by_order_keeps_ties_stable(self):
        actions = [
            {"action_type": "tag", "order": 2},
            {"action_type": "assign", "order": 1},
            {"action_type": "archive", "order": 1},
        ]
        ordered = [action["action_type"] for _, action in sort_actions(actions)]
        assert ordered == ["assign", "archive", "tag"]

    def test_unknown_action_is_reported(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "teleport", "params": {}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["success"] is False
        assert "Unknown action type" in results[0]["error"]

    def test_partial_failure_keeps_successful_actions(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [
                {"action_type": "tag", "params": {"tags": ["billing"]}, "order": 0},
                {"action_type": "set_priority", "params": {"priority": "extreme"}, "order": 1},
                {"action_type": "mark_read", "params": {}, "order": 2},
            ]
        )
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert [r["success"] for r in results] == [True, False, True]
        assert email_message.tags == ["billing"]
        assert email_message.is_read is True
        assert email_message.priority == MessagePriority.medium

    def test_failed_action_rolls_back_its_own_rows(
        self, db_session, make_rule, email_channel, email_message, monkeypatch
    ):
        def _half_done(ctx, params):
            ctx.db.add(Ticket(tenant_id=ctx.message.tenant_id, subject="orphan"))
            ctx.db.flush()
            raise RuntimeError("provider exploded")

        monkeypatch.setitem(automation_actions._HANDLERS, "archive", _half_done)
        rule = make_rule([{"action_type": "archive", "params": {}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["success"] is False
        assert db_session.query(Ticket).filter(Ticket.subject == "orphan").count() == 0


# ============================================================================
# Reply / forward
# ============================================================================


class TestReplyAction:
    def test_email_reply_is_threaded(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "reply", "params": {"message": "Hi {{sender_name}}, we are on it."}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["success"] is True

        outbox = db_session.query(OutboxMessage).one()
        assert outbox.recipient == "customer@example.org"
        assert outbox.subject == "Re: Broken router"
        assert outbox.body == "Hi Casey Customer, we are on it."
        assert outbox.options["in_reply_to"] == "<abc@example.org>"
        assert outbox.options["references"] == "<root@example.org> <abc@example.org>"
        assert outbox.options["auto_submitted"] is True
        assert outbox.options["automation_depth"] == 1
        assert outbox.in_reply_to_id == email_message.id

    def test_reply_is_idempotent_per_rule_message_action(
        self, db_session, make_rule, email_channel, email_message
    ):
        rule = make_rule([{"action_type": "reply", "params": {"message": "Thanks"}}])
        execute_actions(db_session, rule, email_message, email_channel)
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["data"]["created"] is False
        assert db_session.query(OutboxMessage).count() == 1

    def test_reply_skipped_for_auto_submitted_mail(self, db_session, make_rule, email_channel):
        message = _store_message(db_session, email_channel, metadata_={"auto_submitted": True})
        rule = make_rule([{"action_type": "reply", "params": {"message": "Thanks"}}])
        results = execute_actions(db_session, rule, message, email_channel)
        assert results[0]["success"] is True
        assert results[0]["data"] == {"skipped": "auto_submitted"}
        assert db_session.query(OutboxMessage).count() == 0

    def test_reply_skipped_for_own_address(self, db_session, make_rule, email_channel):
        message = _store_message(db_session, email_channel, from_address="Support@Example.com")
        rule = make_rule([{"action_type": "reply", "params": {"message": "Thanks"}}])
        results = execute_actions(db_session, rule, message, email_channel)
        assert results[0]["data"] == {"skipped": "self_address"}

    def test_reply_with_response_template(self, db_session, make_rule, email_channel, email_message, tenant_id):
        template = ResponseTemplate(
            tenant_id=tenant_id,
            name="Ack",
            subject="Ticket for {{subject}}",
            body="Generic body",
            channel_bodies={"email": "Dear {{sender_name}}, thanks for writing."},
        )
        db_session.add(template)
        db_session.commit()
        rule = make_rule([{"action_type": "reply", "params": {"template_id": str(template.id)}}])

        execute_actions(db_session, rule, email_message, email_channel)

        outbox = db_session.query(OutboxMessage).one()
        assert outbox.subject == "Ticket for Broken router"
        assert outbox.body == "Dear Casey Customer, thanks for writing."
        assert template.usage_count == 1

    def test_reply_with_foreign_template_fails(
        self, db_session, make_rule, email_channel, email_message, other_tenant_id
    ):
        template = ResponseTemplate(tenant_id=other_tenant_id, name="Theirs", body="Nope")
        db_session.add(template)
        db_session.commit()
        rule = make_rule([{"action_type": "reply", "params": {"template_id": str(template.id)}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["success"] is False

    def test_telegram_reply_targets_chat(self, db_session, make_rule, telegram_channel):
        message = _store_message(
            db_session,
            telegram_channel,
            from_address="4242",
            subject=None,
            metadata_={"telegram_message_id": 77},
        )
        rule = make_rule([{"action_type": "auto_reply", "params": {"message": "Got it"}}])
        execute_actions(db_session, rule, message, telegram_channel)
        outbox = db_session.query(OutboxMessage).one()
        assert outbox.recipient == "4242"
        assert outbox.options["reply_to_message_id"] == 77
        assert outbox.options["omit_subject"] is True

    def test_forward_to_each_recipient(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [{"action_type": "forward", "params": {"recipients": "a@corp.io, b@corp.io", "note": "FYI"}}]
        )
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert len(results[0]["data"]["outbox_ids"]) == 2
        rows = db_session.query(OutboxMessage).order_by(OutboxMessage.recipient).all()
        assert [row.recipient for row in rows] == ["a@corp.io", "b@corp.io"]
        assert rows[0].subject == "Fwd: Broken router"
        assert rows[0].body.startswith("FYI\n\n---------- Forwarded message ----------")

    def test_forward_requires_recipients(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "forward", "params": {}}])
        assert execute_actions(db_session, rule, email_message, email_channel)[0]["success"] is False


# ============================================================================
# Ticket / notify / state changes
# ============================================================================


class TestTicketAndStateActions:
    def test_create_ticket_once(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [{"action_type": "create_ticket", "params": {"priority": "high", "category": "network"}}]
        )
        first = execute_actions(db_session, rule, email_message, email_channel)
        second = execute_actions(db_session, rule, email_message, email_channel)

        ticket = db_session.query(Ticket).one()
        assert first[0]["data"]["created"] is True
        assert second[0]["data"] == {"ticket_id": str(ticket.id), "created": False}
        assert ticket.subject == "Broken router"
        assert ticket.priority == MessagePriority.high
        assert ticket.source_message_id == email_message.id
        assert email_message.ticket_id == ticket.id

    def test_notify_in_app_and_email(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [{"action_type": "notify", "params": {"recipients": ["ops@corp.io"], "channels": ["in_app", "email"]}}]
        )
        execute_actions(db_session, rule, email_message, email_channel)

        rows = {n.channel: n for n in db_session.query(Notification).all()}
        assert rows[NotificationChannel.in_app].status == NotificationStatus.delivered
        assert rows[NotificationChannel.email].status == NotificationStatus.queued
        assert (DELIVER_NOTIFICATION_TASK, str(rows[NotificationChannel.email].id)) in pending_tasks(db_session)

    def test_tag_assign_priority_archive_read(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [
                {"action_type": "add_tag", "params": {"tags": ["vip", "vip"]}},
                {"action_type": "assign", "params": {"assignee": "agent-7"}},
                {"action_type": "set_priority", "params": {"priority": "urgent"}},
                {"action_type": "archive", "params": {}},
                {"action_type": "mark_read", "params": {}},
            ]
        )
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert all(result["success"] for result in results)
        assert email_message.tags == ["vip"]
        assert email_message.assigned_to == "agent-7"
        assert email_message.priority == MessagePriority.urgent
        assert email_message.is_archived is True
        assert email_message.is_read is True

    def test_escalate_now(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "escalate", "params": {"notify": ["lead@corp.io"]}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert results[0]["data"] == {"escalated": True, "notifications": 1}
        assert email_message.priority == MessagePriority.urgent
        assert "escalated" in email_message.tags
        assert email_message.escalated_at is not None

    def test_escalate_later_sets_deadline(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "escalate", "params": {"delay_minutes": 30, "notify": ["lead"]}}])
        results = execute_actions(db_session, rule, email_message, email_channel)
        assert "scheduled_for" in results[0]["data"]
        assert email_message.response_deadline is not None
        assert email_message.escalation_target["notify"] == ["lead"]
        assert email_message.escalated_at is None

    def test_webhook_action_queues_delivery(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule(
            [{"action_type": "webhook", "params": {"url": "https://hooks.example.net/in", "secret": "s3"}}],
            name="Hook rule",
        )
        execute_actions(db_session, rule, email_message, email_channel)
        delivery = db_session.query(WebhookDelivery).one()
        assert delivery.status == WebhookDeliveryStatus.pending
        assert delivery.payload["rule"]["name"] == "Hook rule"
        assert delivery.payload["message"]["channel_type"] == ChannelType.email.value
        assert delivery.secret == "s3"

    def test_webhook_rejects_non_http_url(self, db_session, make_rule, email_channel, email_message):
        rule = make_rule([{"action_type": "webhook", "params": {"url": "ftp://example.net"}}])
        assert execute_actions(db_session, rule, email_message, email_channel)[0]["success"] is False

from datetime import UTC, datetime, timedelta

from app.models.automation_rule import AutomationLogOutcome
from app.models.omnibridge.enums import MessagePriority, NotificationChannel
from app.models.omnibridge.notification import Notification
from app.models.omnibridge.ticket import Ticket
from app.services.omnibridge.escalation import ESCALATED_TAG, add_tags, escalate_message, escalate_overdue_messages
from app.services.omnibridge.inbound import receive_inbound_message
from app.services.omnibridge.inbox import inbox


def _received(db_session, email_channel, make_inbound, **overrides):
    return receive_inbound_message(db_session, make_inbound(email_channel, **overrides)).message


def test_add_tags_keeps_order_and_skips_blanks():
    assert add_tags(["a"], ["b", " a ", "", "c"]) == ["a", "b", "c"]


def test_escalate_message_updates_ticket_and_notifies(db_session, email_channel, make_inbound):
    message = _received(db_session, email_channel, make_inbound)
    ticket = Ticket(tenant_id=message.tenant_id, subject="Order", source_message_id=message.id)
    message.ticket = ticket
    db_session.flush()

    queued = escalate_message(
        db_session,
        message,
        {"level": "high", "notify": ["lead", "oncall"], "channels": ["in_app"], "subject": "Look: {{subject}}"},
    )
    db_session.commit()

    assert message.priority == MessagePriority.high
    assert ESCALATED_TAG in message.tags
    assert message.escalated_at is not None
    db_session.refresh(ticket)
    assert ticket.priority == MessagePriority.high
    assert ticket.tags == [ESCALATED_TAG]
    assert [n.recipient for n in queued] == ["lead", "oncall"]
    assert queued[0].subject == "Look: Question about my order"


def test_overdue_messages_are_escalated_once(db_session, email_channel, make_inbound, make_rule):
    make_rule([{"action_type": "escalate", "params": {"delay_minutes": 30, "notify": ["lead"]}}])
    message = _received(db_session, email_channel, make_inbound)
    assert message.response_deadline is not None
    assert db_session.query(Notification).count() == 0

    later = datetime.now(UTC) + timedelta(minutes=31)
    assert escalate_overdue_messages(db_session, now=datetime.now(UTC)) == 0
    assert escalate_overdue_messages(db_session, now=later) == 1
    assert escalate_overdue_messages(db_session, now=later) == 0

    notification = db_session.query(Notification).one()
    assert notification.channel == NotificationChannel.in_app
    assert notification.recipient == "lead"
    assert message.priority == MessagePriority.urgent


def test_responded_messages_are_not_escalated(db_session, email_channel, make_inbound, make_rule, tenant_id):
    make_rule([{"action_type": "escalate", "params": {"delay_minutes": 5, "notify": ["lead"]}}])
    message = _received(db_session, email_channel, make_inbound)
    inbox.mark_responded(db_session, tenant_id, message.id)

    assert escalate_overdue_messages(db_session, now=datetime.now(UTC) + timedelta(hours=1)) == 0


def test_invalid_delayed_escalation_fails_when_scheduled(db_session, email_channel, make_inbound, make_rule):
    make_rule([{"action_type": "escalate", "params": {"delay_minutes": 5, "level": "critical"}}])
    result = receive_inbound_message(db_session, make_inbound(email_channel))

    execution = result.executions[0]
    assert execution.outcome == AutomationLogOutcome.failure
    assert "critical" in execution.results[0]["error"]
    assert result.message.response_deadline is None
    assert escalate_overdue_messages(db_session, now=datetime.now(UTC) + timedelta(hours=1)) == 0


def test_unknown_notification_channel_is_rejected_when_scheduled(
    db_session, email_channel, make_inbound, make_rule
):
    make_rule([{"action_type": "escalate", "params": {"delay_minutes": 5, "channels": ["pager"]}}])
    result = receive_inbound_message(db_session, make_inbound(email_channel))
    assert "pager" in result.executions[0].results[0]["error"]
    assert result.message.escalation_target is None


def test_one_broken_message_does_not_stall_the_sweep(db_session, email_channel, make_inbound):
    overdue = datetime.now(UTC) - timedelta(minutes=1)
    broken = _received(db_session, email_channel, make_inbound, external_id="broken")
    broken.response_deadline = overdue - timedelta(minutes=1)
    broken.escalation_target = {"level": "critical", "notify": ["lead"]}
    healthy = _received(db_session, email_channel, make_inbound, external_id="healthy")
    healthy.response_deadline = overdue
    healthy.escalation_target = {"level": "high", "notify": ["lead"]}
    db_session.commit()

    assert escalate_overdue_messages(db_session) == 1
    assert escalate_overdue_messages(db_session) == 0

    db_session.expire_all()
    assert healthy.escalated_at is not None
    assert healthy.priority == MessagePriority.high
    assert broken.escalated_at is None
    assert db_session.query(Notification).one().message_id == healthy.id

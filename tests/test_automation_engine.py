"""Tests for rule selection and execution bookkeeping."""

import uuid
from datetime import UTC, datetime

from app.models.automation_rule import AutomationLogOutcome, AutomationRuleLog, AutomationRuleStatus
from app.models.omnibridge.enums import MessageDirection, MessagePriority
from app.models.omnibridge.inbox import InboxMessage
from app.services.omnibridge.automation import automation_handler, build_condition_context


def _store_message(db_session, channel, **overrides):
    external_id = uuid.uuid4().hex
    data = {
        "tenant_id": channel.tenant_id,
        "channel_id": channel.id,
        "channel_type": channel.channel_type,
        "direction": MessageDirection.inbound,
        "external_id": external_id,
        "dedupe_key": f"{channel.id}:{external_id}",
        "from_address": "customer@example.org",
        "from_name": "Casey",
        "subject": "Urgent: outage",
        "body_text": "Nothing works since this morning.",
        "priority": MessagePriority.urgent,
        "tags": [],
        "metadata_": {},
    }
    data.update(overrides)
    message = InboxMessage(**data)
    db_session.add(message)
    db_session.commit()
    db_session.refresh(message)
    return message


TAG = [{"action_type": "tag", "params": {"tags": ["seen"]}}]
URGENT = [{"trigger_type": "priority", "config": {"priorities": ["urgent"]}}]


class TestAutomationHandler:
    def test_no_rules_noop(self, db_session, email_channel):
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []

    def test_matching_rule_is_logged(self, db_session, email_channel, make_rule):
        rule = make_rule(TAG, triggers=URGENT)
        message = _store_message(db_session, email_channel)

        executions = automation_handler.handle(db_session, message)

        assert len(executions) == 1
        assert executions[0].outcome == AutomationLogOutcome.success
        assert executions[0].matched_triggers == ["priority"]
        log = db_session.query(AutomationRuleLog).one()
        assert log.rule_id == rule.id
        assert log.message_id == message.id
        assert log.channel_type == "email"
        assert log.actions_executed[0]["action_type"] == "tag"
        db_session.refresh(rule)
        assert rule.execution_count == 1
        assert rule.success_count == 1
        assert rule.last_triggered_at is not None
        assert message.processing_rule_id == rule.id

    def test_non_matching_rule_is_not_logged(self, db_session, email_channel, make_rule):
        make_rule(TAG, triggers=[{"trigger_type": "priority", "config": {"priorities": ["low"]}}])
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []
        assert db_session.query(AutomationRuleLog).count() == 0

    def test_skip_outbound_messages(self, db_session, email_channel, make_rule):
        make_rule(TAG)
        message = _store_message(db_session, email_channel, direction=MessageDirection.outbound)
        assert automation_handler.handle(db_session, message) == []

    def test_skip_high_depth(self, db_session, email_channel, make_rule):
        make_rule(TAG)
        message = _store_message(db_session, email_channel, metadata_={"automation_depth": 3})
        assert automation_handler.handle(db_session, message) == []

    def test_later_rule_sees_earlier_changes(self, db_session, email_channel, make_rule):
        make_rule([{"action_type": "set_priority", "params": {"priority": "urgent"}}], priority=10, name="Raise")
        follow_up = make_rule(
            TAG,
            conditions=[{"field": "message.priority", "op": "eq", "value": "urgent"}],
            priority=1,
            name="Follow up",
        )
        message = _store_message(db_session, email_channel, priority=MessagePriority.low)

        executions = automation_handler.handle(db_session, message)

        assert [execution.rule_name for execution in executions] == ["Raise", "Follow up"]
        assert executions[1].rule_id == str(follow_up.id)
        assert message.priority == MessagePriority.urgent
        assert message.tags == ["seen"]

    def test_priority_order_and_stop_after_match(self, db_session, email_channel, make_rule):
        low = make_rule(TAG, name="low", priority=1)
        high = make_rule(TAG, name="high", priority=50, stop_after_match=True)
        message = _store_message(db_session, email_channel)

        executions = automation_handler.handle(db_session, message)

        assert [execution.rule_name for execution in executions] == ["high"]
        assert message.processing_rule_id == high.id
        db_session.refresh(low)
        assert low.execution_count == 0

    def test_all_matching_rules_run_without_stop(self, db_session, email_channel, make_rule):
        make_rule(TAG, name="first", priority=10)
        make_rule([{"action_type": "mark_read"}], name="second", priority=5)
        message = _store_message(db_session, email_channel)
        executions = automation_handler.handle(db_session, message)
        assert [execution.rule_name for execution in executions] == ["first", "second"]
        assert message.is_read is True

    def test_cooldown_skip(self, db_session, email_channel, make_rule):
        rule = make_rule(TAG, cooldown_seconds=3600)
        rule.last_triggered_at = datetime.now(UTC)
        db_session.commit()
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []

    def test_paused_rule_ignored(self, db_session, email_channel, make_rule):
        make_rule(TAG, status=AutomationRuleStatus.paused)
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []

    def test_other_tenant_rules_ignored(self, db_session, email_channel, make_rule, other_tenant_id):
        make_rule(TAG, tenant=other_tenant_id)
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []

    def test_condition_mismatch(self, db_session, email_channel, make_rule):
        make_rule(TAG, conditions=[{"field": "message.channel_type", "op": "eq", "value": "telegram"}])
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message) == []

    def test_partial_failure_outcome(self, db_session, email_channel, make_rule):
        rule = make_rule(TAG + [{"action_type": "forward", "params": {}}])
        message = _store_message(db_session, email_channel)

        executions = automation_handler.handle(db_session, message)

        assert executions[0].outcome == AutomationLogOutcome.partial_failure
        log = db_session.query(AutomationRuleLog).one()
        assert "forward requires" in log.error
        db_session.refresh(rule)
        assert rule.failure_count == 1

    def test_total_failure_outcome(self, db_session, email_channel, make_rule):
        make_rule([{"action_type": "forward", "params": {}}])
        message = _store_message(db_session, email_channel)
        assert automation_handler.handle(db_session, message)[0].outcome == AutomationLogOutcome.failure


def test_build_condition_context(email_channel):
    message = InboxMessage(
        tenant_id=email_channel.tenant_id,
        channel_id=email_channel.id,
        channel_type=email_channel.channel_type,
        from_address="a@b.io",
        subject="Hello",
        body_text="Body",
        priority=MessagePriority.low,
        tags=["x"],
        attachments=[{"file_name": "a.pdf"}],
        metadata_={"tier": 2},
    )
    context = build_condition_context(message, email_channel)
    assert context["message"]["channel_type"] == "email"
    assert context["message"]["priority"] == "low"
    assert context["message"]["attachment_count"] == 1
    assert context["message"]["metadata"] == {"tier": 2}
    assert context["channel"]["name"] == "Support mailbox"

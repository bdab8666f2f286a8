"""Synchronous automation engine for stored inbound messages."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.automation_rule import AutomationLogOutcome, AutomationRule, AutomationRuleLog
from app.models.omnibridge.channel import Channel
from app.models.omnibridge.enums import MessageDirection
from app.models.omnibridge.inbox import InboxMessage
from app.services.automation_actions import AUTOMATION_DEPTH_KEY, MAX_AUTOMATION_DEPTH, execute_actions
from app.services.automation_rules import automation_rules_service
from app.services.automation_triggers import rule_matches
from app.services.common import as_utc
from app.services.omnibridge.observability import RULE_EXECUTIONS

logger = get_logger(__name__)


@dataclass
class RuleExecution:
    rule_id: str
    rule_name: str
    outcome: AutomationLogOutcome
    matched_triggers: list[str] = field(default_factory=list)
    results: list[dict] = field(default_factory=list)
    log_id: str | None = None


def build_condition_context(message, channel: Channel | None = None) -> dict:
    """Context dict for field/op/value conditions (``message.*``, ``channel.*``)."""
    channel_type = getattr(message, "channel_type", None)
    priority = getattr(message, "priority", None)
    metadata = getattr(message, "metadata_", None) or getattr(message, "metadata", None) or {}
    return {
        "tenant_id": str(getattr(message, "tenant_id", "") or ""),
        "message": {
            "channel_type": getattr(channel_type, "value", channel_type),
            "from_address": getattr(message, "from_address", None),
            "from_name": getattr(message, "from_name", None),
            "to_address": getattr(message, "to_address", None),
            "subject": getattr(message, "subject", None),
            "body": getattr(message, "body_text", None) or getattr(message, "body_html", None),
            "priority": getattr(priority, "value", priority),
            "tags": list(getattr(message, "tags", None) or []),
            "attachment_count": len(getattr(message, "attachments", None) or []),
            "thread_id": getattr(message, "thread_id", None),
            "metadata": metadata if isinstance(metadata, dict) else {},
        },
        "channel": {
            "id": str(channel.id) if channel is not None else None,
            "name": channel.name if channel is not None else None,
            "provider": channel.provider if channel is not None else None,
        },
    }


def _outcome(results: list[dict]) -> AutomationLogOutcome:
    if not results:
        return AutomationLogOutcome.success
    failures = sum(1 for result in results if not result.get("success"))
    if failures == 0:
        return AutomationLogOutcome.success
    if failures == len(results):
        return AutomationLogOutcome.failure
    return AutomationLogOutcome.partial_failure


def _in_cooldown(rule: AutomationRule, now: datetime) -> bool:
    if not rule.cooldown_seconds:
        return False
    last = as_utc(rule.last_triggered_at)
    return last is not None and now < last + timedelta(seconds=rule.cooldown_seconds)


class AutomationHandler:
    def handle(self, db: Session, message: InboxMessage) -> list[RuleExecution]:
        """Run every active rule of the message's tenant, highest priority first."""
        if message.direction != MessageDirection.inbound:
            return []
        metadata = message.metadata_ if isinstance(message.metadata_, dict) else {}
        depth = int(metadata.get(AUTOMATION_DEPTH_KEY) or 0)
        if depth >= MAX_AUTOMATION_DEPTH:
            logger.warning("automation_loop_guard message_id=%s depth=%s", message.id, depth)
            return []

        channel = db.get(Channel, message.channel_id)
        rules = automation_rules_service.get_active_rules(db, message.tenant_id)
        executions: list[RuleExecution] = []
        for rule in rules:
            now = datetime.now(UTC)
            if _in_cooldown(rule, now):
                logger.debug("automation_rule_cooldown rule_id=%s", rule.id)
                continue
            # Rebuilt per rule so conditions see what earlier rules changed.
            context = build_condition_context(message, channel)
            match = rule_matches(rule, message, context)
            if not match.matched:
                continue

            started = time.monotonic()
            results = execute_actions(db, rule, message, channel)
            duration_ms = int((time.monotonic() - started) * 1000)
            outcome = _outcome(results)
            errors = [r["error"] for r in results if r.get("error")]
            if message.processing_rule_id is None:
                message.processing_rule_id = rule.id
            log: AutomationRuleLog = automation_rules_service.record_execution(
                db,
                rule,
                message_id=message.id,
                channel_type=message.channel_type.value,
                outcome=outcome,
                matched_triggers=match.matched_triggers,
                actions_executed=results,
                duration_ms=duration_ms,
                error="; ".join(errors)[:2000] if errors else None,
            )
            RULE_EXECUTIONS.labels(outcome=outcome.value).inc()
            logger.info(
                "automation_rule_executed rule_id=%s message_id=%s outcome=%s actions=%s",
                rule.id,
                message.id,
                outcome.value,
                len(results),
            )
            executions.append(
                RuleExecution(
                    rule_id=str(rule.id),
                    rule_name=rule.name,
                    outcome=outcome,
                    matched_triggers=match.matched_triggers,
                    results=results,
                    log_id=str(log.id),
                )
            )
            if rule.stop_after_match:
                break
        return executions


automation_handler = AutomationHandler()

"""Automation rules service.

Tenant scoped CRUD for rules, execution bookkeeping, the rule template
catalogue and dry runs.
"""

from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime
from types import SimpleNamespace

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.automation_rule import (
    AutomationLogOutcome,
    AutomationRule,
    AutomationRuleLog,
    AutomationRuleStatus,
)
from app.models.omnibridge.enums import ChannelType, MessagePriority
from app.schemas.automation_rule import (
    AutomationRuleCreate,
    AutomationRuleUpdate,
    RuleTestRequest,
    RuleTestResult,
)
from app.services.automation_conditions import evaluate_conditions
from app.services.automation_triggers import match_triggers
from app.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from app.services.omnibridge.normalizers import detect_priority
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


RULE_TEMPLATES: dict[str, dict] = {
    "urgent_escalation": {
        "name": "Urgent keyword escalation",
        "description": "Raise priority and alert the on-call team when a message says it is urgent.",
        "category": "escalation",
        "rule": {
            "name": "Urgent keyword escalation",
            "triggers": [
                {
                    "trigger_type": "keyword",
                    "config": {"keywords": ["urgent", "emergency", "critical", "asap"], "whole_word": True},
                }
            ],
            "actions": [
                {"action_type": "escalate", "params": {"level": "urgent", "notify": ["on-call"]}, "order": 0},
                {"action_type": "create_ticket", "params": {"category": "urgent"}, "order": 1},
            ],
            "priority": 100,
        },
    },
    "after_hours_reply": {
        "name": "After hours auto reply",
        "description": "Acknowledge messages received outside business hours.",
        "category": "auto_reply",
        "rule": {
            "name": "After hours auto reply",
            "triggers": [{"trigger_type": "time", "config": {"start": "18:00", "end": "08:00"}}],
            "actions": [
                {
                    "action_type": "reply",
                    "params": {
                        "message": (
                            "Hi {{sender_name}}, thanks for your message. Our team is offline right now "
                            "and will get back to you during business hours."
                        )
                    },
                    "order": 0,
                }
            ],
            "priority": 10,
            "cooldown_seconds": 3600,
        },
    },
    "vip_routing": {
        "name": "VIP sender routing",
        "description": "Assign messages from key accounts to the account team and tag them.",
        "category": "routing",
        "rule": {
            "name": "VIP sender routing",
            "triggers": [{"trigger_type": "sender", "config": {"domains": ["example.com"]}}],
            "actions": [
                {"action_type": "tag", "params": {"tags": ["vip"]}, "order": 0},
                {"action_type": "assign", "params": {"assignee": "account-team"}, "order": 1},
                {"action_type": "set_priority", "params": {"priority": "high"}, "order": 2},
            ],
            "priority": 50,
        },
    },
    "complaint_detection": {
        "name": "Complaint detection",
        "description": "Open a ticket and notify support leads when a message looks like a complaint.",
        "category": "support",
        "rule": {
            "name": "Complaint detection",
            "triggers": [
                {
                    "trigger_type": "content_pattern",
                    "config": {"pattern": r"\b(complain\w*|refund|unacceptable|cancel\w*)\b"},
                }
            ],
            "actions": [
                {"action_type": "create_ticket", "params": {"category": "complaint"}, "order": 0},
                {"action_type": "tag", "params": {"tags": ["complaint"]}, "order": 1},
                {"action_type": "notify", "params": {"recipients": ["support-leads"]}, "order": 2},
            ],
            "priority": 60,
        },
    },
    "newsletter_archive": {
        "name": "Newsletter archiving",
        "description": "File newsletters and bulk mail away from the working inbox.",
        "category": "housekeeping",
        "rule": {
            "name": "Newsletter archiving",
            "triggers": [
                {"trigger_type": "keyword", "config": {"keywords": ["newsletter", "unsubscribe"]}},
                {"trigger_type": "channel", "config": {"channel_types": ["email"]}},
            ],
            "trigger_logic": "all",
            "actions": [
                {"action_type": "tag", "params": {"tags": ["newsletter"]}, "order": 0},
                {"action_type": "mark_read", "params": {}, "order": 1},
                {"action_type": "archive", "params": {}, "order": 2},
            ],
            "priority": 5,
            "stop_after_match": True,
        },
    },
}


def list_rule_templates() -> list[dict]:
    return [
        {
            "key": key,
            "name": template["name"],
            "description": template["description"],
            "category": template["category"],
            "rule": copy.deepcopy(template["rule"]),
        }
        for key, template in RULE_TEMPLATES.items()
    ]


class AutomationRulesManager(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        status: str | None = None,
        search: str | None = None,
        is_active: bool | None = None,
        order_by: str = "priority",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[AutomationRule]:
        query = db.query(AutomationRule).filter(AutomationRule.tenant_id == coerce_uuid(tenant_id))

        status_value = None
        if status:
            status_value = validate_enum(status, AutomationRuleStatus, "status")
            query = query.filter(AutomationRule.status == status_value)
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    AutomationRule.name.ilike(like),
                    AutomationRule.description.ilike(like),
                )
            )
        if is_active is None:
            if status_value != AutomationRuleStatus.archived:
                query = query.filter(AutomationRule.is_active.is_(True))
        else:
            query = query.filter(AutomationRule.is_active == is_active)

        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "priority": AutomationRule.priority,
                "created_at": AutomationRule.created_at,
                "updated_at": AutomationRule.updated_at,
                "name": AutomationRule.name,
                "execution_count": AutomationRule.execution_count,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def get(db: Session, tenant_id, rule_id) -> AutomationRule:
        rule = db.get(AutomationRule, coerce_uuid(rule_id))
        if not rule or rule.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Automation rule not found")
        return rule

    @staticmethod
    def create(
        db: Session,
        tenant_id,
        payload: AutomationRuleCreate,
        created_by: str | None = None,
    ) -> AutomationRule:
        data = payload.model_dump(mode="json")
        data["trigger_logic"] = payload.trigger_logic
        data["status"] = payload.status
        rule = AutomationRule(
            tenant_id=coerce_uuid(tenant_id),
            created_by=created_by,
            is_active=payload.status != AutomationRuleStatus.archived,
            **data,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        logger.info("automation_rule_created rule_id=%s tenant_id=%s", rule.id, rule.tenant_id)
        return rule

    @staticmethod
    def update(db: Session, tenant_id, rule_id, payload: AutomationRuleUpdate) -> AutomationRule:
        rule = AutomationRulesManager.get(db, tenant_id, rule_id)
        data = payload.model_dump(exclude_unset=True, mode="json")
        for key in ("trigger_logic", "status"):
            if key in data:
                data[key] = getattr(payload, key)
        for key, value in data.items():
            setattr(rule, key, value)
        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def delete(db: Session, tenant_id, rule_id) -> None:
        """Soft delete an automation rule."""
        rule = AutomationRulesManager.get(db, tenant_id, rule_id)
        rule.is_active = False
        rule.status = AutomationRuleStatus.archived
        db.commit()

    @staticmethod
    def toggle_status(db: Session, tenant_id, rule_id, status: AutomationRuleStatus) -> AutomationRule:
        rule = AutomationRulesManager.get(db, tenant_id, rule_id)
        rule.status = status
        if status == AutomationRuleStatus.active:
            rule.is_active = True
        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def get_active_rules(db: Session, tenant_id) -> list[AutomationRule]:
        """Hot path query using the tenant/status index; ties keep creation order."""
        return (
            db.query(AutomationRule)
            .filter(
                AutomationRule.tenant_id == coerce_uuid(tenant_id),
                AutomationRule.status == AutomationRuleStatus.active,
                AutomationRule.is_active.is_(True),
            )
            .order_by(AutomationRule.priority.desc(), AutomationRule.created_at.asc())
            .all()
        )

    @staticmethod
    def record_execution(
        db: Session,
        rule: AutomationRule,
        *,
        message_id,
        channel_type: str | None,
        outcome: AutomationLogOutcome,
        matched_triggers: list[str],
        actions_executed: list[dict],
        duration_ms: int,
        error: str | None = None,
    ) -> AutomationRuleLog:
        log = AutomationRuleLog(
            tenant_id=rule.tenant_id,
            rule_id=rule.id,
            message_id=message_id,
            channel_type=channel_type,
            outcome=outcome,
            matched_triggers=matched_triggers,
            actions_executed=actions_executed,
            duration_ms=duration_ms,
            error=error,
        )
        db.add(log)

        rule.execution_count = (rule.execution_count or 0) + 1
        if outcome == AutomationLogOutcome.success:
            rule.success_count = (rule.success_count or 0) + 1
        elif outcome in (AutomationLogOutcome.failure, AutomationLogOutcome.partial_failure):
            rule.failure_count = (rule.failure_count or 0) + 1
        rule.last_triggered_at = datetime.now(UTC)

        db.commit()
        db.refresh(log)
        return log

    @staticmethod
    def recent_logs(db: Session, tenant_id, rule_id, limit: int = 20) -> list[AutomationRuleLog]:
        rule = AutomationRulesManager.get(db, tenant_id, rule_id)
        return (
            db.query(AutomationRuleLog)
            .filter(AutomationRuleLog.rule_id == rule.id)
            .order_by(AutomationRuleLog.created_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def count_by_status(db: Session, tenant_id) -> dict:
        results = (
            db.query(AutomationRule.status, func.count(AutomationRule.id))
            .filter(AutomationRule.tenant_id == coerce_uuid(tenant_id))
            .filter(AutomationRule.is_active.is_(True))
            .group_by(AutomationRule.status)
            .all()
        )
        counts = {s.value: 0 for s in AutomationRuleStatus}
        for status_val, count in results:
            if status_val:
                counts[status_val.value] = count
        counts["total"] = sum(counts.values())
        return counts

    @staticmethod
    def create_from_template(
        db: Session,
        tenant_id,
        template_key: str,
        overrides: dict | None = None,
        created_by: str | None = None,
    ) -> AutomationRule:
        template = RULE_TEMPLATES.get(template_key)
        if template is None:
            raise HTTPException(status_code=404, detail="Rule template not found")
        data = copy.deepcopy(template["rule"])
        data.update(overrides or {})
        return AutomationRulesManager.create(
            db, tenant_id, AutomationRuleCreate.model_validate(data), created_by=created_by
        )

    @staticmethod
    def test_rule(db: Session, tenant_id, rule_id, sample: RuleTestRequest) -> RuleTestResult:
        """Evaluate triggers and conditions against a sample message; no actions run."""
        from app.services.omnibridge.automation import build_condition_context

        rule = AutomationRulesManager.get(db, tenant_id, rule_id)
        channel_type = validate_enum(sample.channel_type, ChannelType, "channel_type")
        priority = (
            validate_enum(sample.priority, MessagePriority, "priority")
            if sample.priority
            else detect_priority(sample.subject, sample.body_text)
        )
        message = SimpleNamespace(
            tenant_id=rule.tenant_id,
            channel_id=None,
            channel_type=channel_type,
            from_address=sample.from_address,
            from_name=sample.from_name,
            to_address=None,
            subject=sample.subject,
            body_text=sample.body_text,
            body_html=None,
            priority=priority,
            tags=[],
            attachments=sample.attachments,
            thread_id=None,
            received_at=sample.received_at or datetime.now(UTC),
            metadata_=sample.metadata,
        )
        logic = rule.trigger_logic.value if rule.trigger_logic else "any"
        match = match_triggers(rule.triggers or [], message, logic)
        conditions_passed = evaluate_conditions(rule.conditions or [], build_condition_context(message))
        return RuleTestResult(
            matched=match.matched and conditions_passed,
            matched_triggers=match.matched_triggers,
            conditions_passed=conditions_passed,
            actions=list(rule.actions or []),
        )


automation_rules_service = AutomationRulesManager()

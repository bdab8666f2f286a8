"""Trigger matcher for automation rules.

A trigger is ``{"trigger_type": ..., "config": {...}}``. Matching works on
any object exposing the inbox message attributes (channel_type, channel_id,
priority, from_address, from_name, subject, body_text, body_html,
attachments, received_at), so dry runs can pass a plain namespace.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.schemas.automation_rule import canonical_trigger_type
from app.services.automation_conditions import evaluate_conditions

logger = logging.getLogger(__name__)

_WEEKDAYS = {
    "mon": 0,
    "monday": 0,
    "tue": 1,
    "tuesday": 1,
    "wed": 2,
    "wednesday": 2,
    "thu": 3,
    "thursday": 3,
    "fri": 4,
    "friday": 4,
    "sat": 5,
    "saturday": 5,
    "sun": 6,
    "sunday": 6,
}


@dataclass(frozen=True)
class TriggerMatch:
    matched: bool
    matched_triggers: list[str] = field(default_factory=list)


def match_triggers(triggers: list[dict] | None, message, logic: str = "any") -> TriggerMatch:
    """Evaluate a rule's triggers.

    ``any`` matches when one trigger matches, ``all`` when every trigger
    does. A rule without triggers matches every message.
    """
    if not triggers:
        return TriggerMatch(matched=True, matched_triggers=[])

    matched: list[str] = []
    for trigger in triggers:
        trigger_type = canonical_trigger_type(str(trigger.get("trigger_type") or trigger.get("type") or ""))
        config = trigger.get("config") or {}
        if not isinstance(config, dict):
            config = {}
        if _evaluate_trigger(trigger_type, config, message):
            matched.append(trigger_type)
        elif logic == "all":
            return TriggerMatch(matched=False, matched_triggers=[])

    if logic == "all":
        return TriggerMatch(matched=True, matched_triggers=matched)
    return TriggerMatch(matched=bool(matched), matched_triggers=matched)


def _evaluate_trigger(trigger_type: str, config: dict, message) -> bool:
    evaluator = _EVALUATORS.get(trigger_type)
    if evaluator is None:
        logger.warning("Unknown automation trigger type: %s", trigger_type)
        return False
    return evaluator(config, message)


def _text_fields(config: dict, message) -> list[str]:
    fields = config.get("fields") or ["subject", "body"]
    values: list[str] = []
    for name in fields:
        if name == "body":
            values.append(getattr(message, "body_text", None) or getattr(message, "body_html", None) or "")
        elif name == "sender":
            values.append(getattr(message, "from_address", None) or "")
        else:
            values.append(getattr(message, name, None) or "")
    return values


def _match_keyword(config: dict, message) -> bool:
    keywords = [str(k).strip() for k in (config.get("keywords") or []) if str(k).strip()]
    if not keywords:
        return False
    case_sensitive = bool(config.get("case_sensitive"))
    whole_word = bool(config.get("whole_word"))
    text = " ".join(_text_fields(config, message))
    if not case_sensitive:
        text = text.lower()

    def _hit(keyword: str) -> bool:
        needle = keyword if case_sensitive else keyword.lower()
        if whole_word:
            return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", text) is not None
        return needle in text

    operator = str(config.get("operator") or "or").lower()
    if operator == "and":
        return all(_hit(keyword) for keyword in keywords)
    return any(_hit(keyword) for keyword in keywords)


def _parse_clock(value) -> time | None:
    if not value:
        return None
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        logger.warning("Invalid time trigger clock value: %s", value)
        return None


def _resolve_days(raw_days) -> set[int] | None:
    if not raw_days:
        return None
    days: set[int] = set()
    for day in raw_days:
        if isinstance(day, int) and 0 <= day <= 6:
            days.add(day)
        elif isinstance(day, str) and day.strip().lower() in _WEEKDAYS:
            days.add(_WEEKDAYS[day.strip().lower()])
    return days


def _local_time(config: dict, message) -> datetime:
    received_at = getattr(message, "received_at", None) or datetime.now(UTC)
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=UTC)
    tz_name = config.get("timezone") or "UTC"
    try:
        return received_at.astimezone(ZoneInfo(tz_name))
    except ZoneInfoNotFoundError:
        logger.warning("Unknown time trigger timezone: %s", tz_name)
        return received_at.astimezone(UTC)


def _match_time(config: dict, message) -> bool:
    """Time window check; ``start`` after ``end`` means the window wraps midnight."""
    window = config.get("time_range") if isinstance(config.get("time_range"), dict) else config
    start = _parse_clock(window.get("start"))
    end = _parse_clock(window.get("end"))
    local = _local_time(config, message)
    days = _resolve_days(config.get("days"))

    if start is None or end is None:
        return days is not None and local.weekday() in days

    current = local.time().replace(second=0, microsecond=0)
    if start <= end:
        in_window = start <= current < end
        window_day = local.weekday()
    else:
        in_window = current >= start or current < end
        # Early-morning hours belong to the window that opened the previous day.
        window_day = local.weekday() if current >= start else (local.weekday() - 1) % 7
    if not in_window:
        return False
    return days is None or window_day in days


def _match_channel(config: dict, message) -> bool:
    channel_type = getattr(message, "channel_type", None)
    channel_value = getattr(channel_type, "value", channel_type)
    channel_types = {str(item) for item in (config.get("channel_types") or [])}
    channel_ids = {str(item) for item in (config.get("channel_ids") or [])}
    if not channel_types and not channel_ids:
        return False
    if channel_types and channel_value not in channel_types:
        return False
    if channel_ids and str(getattr(message, "channel_id", "")) not in channel_ids:
        return False
    return True


def _match_priority(config: dict, message) -> bool:
    priority = getattr(message, "priority", None)
    priority_value = getattr(priority, "value", priority)
    priorities = config.get("priorities") or config.get("priority") or []
    if isinstance(priorities, str):
        priorities = [priorities]
    return priority_value in {str(item) for item in priorities}


def matches_pattern(text: str, pattern: str) -> bool:
    """Case-insensitive regex search, falling back to substring for invalid patterns."""
    if not text or not pattern:
        return False
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error:
        return pattern.lower() in text.lower()


def _match_sender(config: dict, message) -> bool:
    address = (getattr(message, "from_address", None) or "").lower()
    name = getattr(message, "from_name", None) or ""
    addresses = {str(item).strip().lower() for item in (config.get("addresses") or [])}
    domains = {str(item).strip().lower().lstrip("@") for item in (config.get("domains") or [])}
    if addresses and address in addresses:
        return True
    if domains and "@" in address and address.rsplit("@", 1)[1] in domains:
        return True
    pattern = config.get("pattern")
    if pattern:
        return matches_pattern(address, pattern) or matches_pattern(name, pattern)
    return False


def _match_content_pattern(config: dict, message) -> bool:
    pattern = config.get("pattern")
    if not pattern:
        return False
    return any(matches_pattern(value, pattern) for value in _text_fields(config, message))


def _match_has_attachment(config: dict, message) -> bool:
    return bool(getattr(message, "attachments", None))


_EVALUATORS = {
    "keyword": _match_keyword,
    "time": _match_time,
    "channel": _match_channel,
    "priority": _match_priority,
    "sender": _match_sender,
    "content_pattern": _match_content_pattern,
    "message_received": lambda config, message: True,
    "has_attachment": _match_has_attachment,
}


def rule_matches(rule, message, context: dict) -> TriggerMatch:
    """Triggers combined with the rule's logic, then every condition."""
    logic = getattr(rule.trigger_logic, "value", rule.trigger_logic) or "any"
    result = match_triggers(rule.triggers or [], message, logic)
    if not result.matched:
        return result
    if not evaluate_conditions(rule.conditions or [], context):
        return TriggerMatch(matched=False, matched_triggers=[])
    return result

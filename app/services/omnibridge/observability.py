"""Prometheus metrics for OmniBridge."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

INBOUND_MESSAGES = Counter(
    "omnibridge_inbound_messages_total",
    "Total inbound messages received",
    ["channel_type", "status"],  # status: processed, duplicate, skipped, error
)

INBOUND_PROCESSING_TIME = Histogram(
    "omnibridge_inbound_processing_seconds",
    "Time from receipt to the end of synchronous automation",
    ["channel_type"],
)

RULE_EXECUTIONS = Counter(
    "omnibridge_rule_executions_total",
    "Automation rule executions",
    ["outcome"],
)

ACTION_RESULTS = Counter(
    "omnibridge_action_results_total",
    "Automation action results",
    ["action_type", "status"],  # status: success, skipped, failure
)

OUTBOUND_DELIVERIES = Counter(
    "omnibridge_outbound_deliveries_total",
    "Outbound delivery attempts",
    ["kind", "status"],  # kind: outbox, notification, webhook; status: sent, retrying, failed
)

EMAIL_POLLS = Counter(
    "omnibridge_email_polls_total",
    "IMAP poll runs",
    ["status"],
)

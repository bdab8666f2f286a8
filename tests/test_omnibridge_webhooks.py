"""Tests for outbound webhook deliveries."""

import dataclasses
import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from app.models.omnibridge.enums import WebhookDeliveryStatus
from app.services.common import as_utc
from app.services.omnibridge import webhooks as webhooks_service


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _delivery(db_session, tenant_id, **overrides):
    data = {"url": "https://hooks.example.net/omnibridge", "payload": {"event": "matched", "message_id": "m-1"}}
    data.update(overrides)
    delivery = webhooks_service.enqueue_webhook(db_session, tenant_id, data.pop("url"), data.pop("payload"), **data)
    db_session.commit()
    return delivery


class TestEnqueueWebhook:
    def test_rejects_bad_method_and_scheme(self, db_session, tenant_id):
        with pytest.raises(ValueError):
            webhooks_service.enqueue_webhook(db_session, tenant_id, "https://x.io", {}, method="DELETE")
        with pytest.raises(ValueError):
            webhooks_service.enqueue_webhook(db_session, tenant_id, "ftp://x.io", {})

    def test_defaults(self, db_session, tenant_id):
        delivery = _delivery(db_session, tenant_id, method="put", headers={"X-Env": 1})
        assert delivery.method == "PUT"
        assert delivery.headers == {"X-Env": "1"}
        assert delivery.status == WebhookDeliveryStatus.pending
        assert delivery.max_attempts == 6


class TestDeliverWebhook:
    def test_signed_delivery(self, db_session, tenant_id):
        seen = {}

        def handler(request):
            seen["body"] = request.content.decode()
            seen["headers"] = request.headers
            return httpx.Response(200, json={"ok": True})

        delivery = _delivery(db_session, tenant_id, secret="s3cret", event_type="automation.rule_matched")
        result = webhooks_service.deliver_webhook(db_session, delivery.id, client=_client(handler))

        expected_body = json.dumps({"event": "matched", "message_id": "m-1"}, sort_keys=True)
        assert seen["body"] == expected_body
        signature = webhooks_service.compute_signature(expected_body, "s3cret")
        assert seen["headers"][webhooks_service.SIGNATURE_HEADER] == f"sha256={signature}"
        assert seen["headers"][webhooks_service.EVENT_HEADER] == "automation.rule_matched"
        assert seen["headers"][webhooks_service.DELIVERY_HEADER] == str(delivery.id)
        assert result.status == WebhookDeliveryStatus.delivered
        assert result.response_status == 200
        assert result.attempt_log[0]["attempt"] == 1
        assert result.attempt_log[0]["error"] is None

    def test_unsigned_delivery_has_no_signature(self, db_session, tenant_id):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            return httpx.Response(204)

        delivery = _delivery(db_session, tenant_id)
        webhooks_service.deliver_webhook(db_session, delivery.id, client=_client(handler))
        assert webhooks_service.SIGNATURE_HEADER not in seen["headers"]

    def test_server_error_is_retried(self, db_session, tenant_id):
        delivery = _delivery(db_session, tenant_id)

        result = webhooks_service.deliver_webhook(
            db_session, delivery.id, client=_client(lambda request: httpx.Response(500, text="oops"))
        )

        assert result.status == WebhookDeliveryStatus.pending
        assert result.attempt_count == 1
        assert result.error == "HTTP 500: oops"
        assert result.next_attempt_at is not None

    def test_connection_error_is_retried(self, db_session, tenant_id):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        delivery = _delivery(db_session, tenant_id)
        result = webhooks_service.deliver_webhook(db_session, delivery.id, client=_client(handler))
        assert result.status == WebhookDeliveryStatus.pending
        assert result.error.startswith("ConnectError")
        assert result.attempt_log[0]["status_code"] is None

    def test_client_error_fails(self, db_session, tenant_id):
        delivery = _delivery(db_session, tenant_id)
        result = webhooks_service.deliver_webhook(
            db_session, delivery.id, client=_client(lambda request: httpx.Response(404))
        )
        assert result.status == WebhookDeliveryStatus.failed
        assert result.next_attempt_at is None

    def test_last_attempt_fails(self, db_session, tenant_id):
        delivery = _delivery(db_session, tenant_id)
        delivery.attempt_count = 5
        delivery.attempt_log = [{"attempt": n} for n in range(1, 6)]
        db_session.commit()

        result = webhooks_service.deliver_webhook(
            db_session, delivery.id, client=_client(lambda request: httpx.Response(503))
        )

        assert result.status == WebhookDeliveryStatus.failed
        assert len(result.attempt_log) == 6

    def test_retry_delays(self):
        assert webhooks_service._retry_delay(1) == 60
        assert webhooks_service._retry_delay(5) == 960
        assert webhooks_service._retry_delay(12) == 3600

    def test_retry_delays_follow_settings(self, db_session, tenant_id, monkeypatch):
        patched = dataclasses.replace(webhooks_service.settings, webhook_retry_delays=(5, 30))
        monkeypatch.setattr(webhooks_service, "settings", patched)
        assert webhooks_service._retry_delay(1) == 5
        assert webhooks_service._retry_delay(4) == 30

        delivery = _delivery(db_session, tenant_id)
        before = datetime.now(UTC)
        result = webhooks_service.deliver_webhook(
            db_session, delivery.id, client=_client(lambda request: httpx.Response(503))
        )

        assert result.status == WebhookDeliveryStatus.pending
        wait = (as_utc(result.next_attempt_at) - before).total_seconds()
        assert 4 <= wait <= 6


class TestRetrySweep:
    def test_retry_due_webhooks(self, db_session, tenant_id):
        due = _delivery(db_session, tenant_id)
        later = _delivery(db_session, tenant_id)
        later.next_attempt_at = datetime.now(UTC) + timedelta(minutes=30)
        db_session.commit()
        calls = []

        def handler(request):
            calls.append(request.headers[webhooks_service.DELIVERY_HEADER])
            return httpx.Response(200)

        assert webhooks_service.retry_due_webhooks(db_session, client=_client(handler)) == 1
        assert calls == [str(due.id)]
        assert later.status == WebhookDeliveryStatus.pending

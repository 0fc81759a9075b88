"""Tests for the httpx-backed payment gateway adapter and the gateway factory."""

import hashlib
import hmac
import json

import httpx
import pytest
from marketplace.gateway import (
    FakeGateway,
    GatewayError,
    GatewayTimeout,
    HttpGateway,
    get_gateway,
    reset_gateway,
)


def _gateway(handler, **kwargs):
    return HttpGateway(
        base_url="https://pay.example.test",
        api_key="sk_test",
        webhook_secret=kwargs.pop("webhook_secret", "whsec"),
        transport=httpx.MockTransport(handler),
    )


class TestSettle:
    def test_successful_charge(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "ch_123", "status": "succeeded"})

        result = _gateway(handler).settle(2160, "EUR", "pm_card_visa", idempotency_key="ORD-1")

        assert result.success
        assert result.transaction_id == "ch_123"
        assert not result.is_pending
        assert seen["path"] == "/charges"
        assert seen["headers"]["Idempotency-Key"] == "ORD-1"
        assert seen["headers"]["Authorization"] == "Bearer sk_test"
        assert seen["body"] == {"amount": 2160, "currency": "EUR", "payment_method": "pm_card_visa"}

    def test_pending_charge(self):
        gateway = _gateway(lambda r: httpx.Response(200, json={"id": "ch_9", "status": "pending"}))
        result = gateway.settle(100, "EUR", "pm_sepa", idempotency_key="ORD-2")

        assert result.success
        assert result.is_pending

    def test_declined_charge(self):
        gateway = _gateway(
            lambda r: httpx.Response(402, json={"status": "failed", "failure_reason": "card_declined"})
        )
        result = gateway.settle(100, "EUR", "pm_card", idempotency_key="ORD-3")

        assert not result.success
        assert result.failure_reason == "card_declined"

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GatewayTimeout):
            _gateway(handler).settle(100, "EUR", "pm_card", idempotency_key="ORD-4")

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayError):
            _gateway(handler).settle(100, "EUR", "pm_card", idempotency_key="ORD-5")

    def test_server_error(self):
        with pytest.raises(GatewayError):
            _gateway(lambda r: httpx.Response(503, text="down")).settle(100, "EUR", "pm", idempotency_key="ORD-6")

    def test_non_json_body(self):
        with pytest.raises(GatewayError):
            _gateway(lambda r: httpx.Response(200, text="<html>")).settle(100, "EUR", "pm", idempotency_key="ORD-7")

    def test_unknown_status(self):
        gateway = _gateway(lambda r: httpx.Response(200, json={"status": "weird"}))
        with pytest.raises(GatewayError):
            gateway.settle(100, "EUR", "pm", idempotency_key="ORD-8")


class TestRefund:
    def test_refund_succeeds(self):
        gateway = _gateway(lambda r: httpx.Response(200, json={"id": "re_1", "status": "succeeded"}))
        result = gateway.refund("ch_123", 2160, "requested_by_customer")

        assert result.success
        assert result.refund_id == "re_1"

    def test_refund_rejected(self):
        gateway = _gateway(lambda r: httpx.Response(400, json={"status": "failed", "failure_reason": "disputed"}))
        result = gateway.refund("ch_123", 2160, "requested_by_customer")

        assert not result.success
        assert result.failure_reason == "disputed"


class TestWebhookSignature:
    def test_valid_signature(self):
        payload = b'{"order_number": "ORD-1"}'
        signature = hmac.new(b"whsec", payload, hashlib.sha256).hexdigest()

        assert _gateway(lambda r: httpx.Response(200)).verify_webhook_signature(payload, signature)

    def test_tampered_payload(self):
        signature = hmac.new(b"whsec", b"original", hashlib.sha256).hexdigest()
        assert not _gateway(lambda r: httpx.Response(200)).verify_webhook_signature(b"tampered", signature)

    def test_missing_secret_rejects_everything(self):
        gateway = _gateway(lambda r: httpx.Response(200), webhook_secret="")
        assert not gateway.verify_webhook_signature(b"{}", "anything")


class TestGatewayFactory:
    def test_fake_gateway_by_default(self, monkeypatch):
        monkeypatch.delenv("MARKETPLACE_GATEWAY_URL", raising=False)
        reset_gateway()

        assert isinstance(get_gateway(), FakeGateway)

    def test_http_gateway_when_configured(self, monkeypatch):
        monkeypatch.setenv("MARKETPLACE_GATEWAY_URL", "https://pay.example.test")
        monkeypatch.setenv("MARKETPLACE_GATEWAY_WEBHOOK_SECRET", "whsec")
        reset_gateway()

        gateway = get_gateway()
        try:
            assert isinstance(gateway, HttpGateway)
            assert gateway.webhook_secret == "whsec"
        finally:
            gateway.close()
            reset_gateway()

    def test_fake_gateway_idempotent_settlement(self):
        gateway = FakeGateway()
        first = gateway.settle(100, "EUR", "pm", idempotency_key="ORD-1")
        gateway.configure(mode="fail")
        second = gateway.settle(100, "EUR", "pm", idempotency_key="ORD-1")

        assert first == second
        assert len(gateway.calls) == 2

    def test_fake_gateway_rejects_unknown_mode(self):
        with pytest.raises(ValueError):
            FakeGateway().configure(mode="explode")

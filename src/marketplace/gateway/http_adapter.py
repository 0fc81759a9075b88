"""HTTP payment gateway adapter.

Talks JSON to a provider endpoint with httpx. Requests carry the
idempotency key as a header so a retried settlement can never charge twice.
Transport timeouts surface as ``GatewayTimeout``; every other transport or
protocol problem surfaces as ``GatewayError``.

Webhooks are signed with HMAC-SHA256 over the raw body using the shared
webhook secret.
"""

import hashlib
import hmac

import httpx
import structlog

from marketplace.gateway.port import (
    GatewayError,
    GatewayTimeout,
    PaymentGateway,
    RefundResult,
    SettlementResult,
    SettlementStatus,
)

logger = structlog.get_logger(__name__)


class HttpGateway(PaymentGateway):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        webhook_secret: str = "",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            timeout=timeout,
            transport=transport,
        )

    def _post(self, path: str, payload: dict, idempotency_key: str | None = None) -> dict:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        try:
            response = self.client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout", path=path)
            raise GatewayTimeout(f"Gateway timed out on {path}") from exc
        except httpx.HTTPError as exc:
            logger.error("gateway_unreachable", path=path, error=str(exc))
            raise GatewayError(f"Gateway request to {path} failed: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayError(f"Gateway answered {response.status_code} on {path}")

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"Gateway sent a non-JSON body on {path}") from exc

    def settle(
        self,
        amount_minor_units: int,
        currency: str,
        method_ref: str,
        idempotency_key: str,
    ) -> SettlementResult:
        body = self._post(
            "/charges",
            {"amount": amount_minor_units, "currency": currency, "payment_method": method_ref},
            idempotency_key=idempotency_key,
        )
        status = body.get("status", SettlementStatus.FAILED.value)
        if status not in {s.value for s in SettlementStatus}:
            raise GatewayError(f"Unknown settlement status {status!r}")

        return SettlementResult(
            success=status != SettlementStatus.FAILED.value,
            status=status,
            transaction_id=body.get("id"),
            failure_reason=body.get("failure_reason"),
        )

    def refund(
        self,
        transaction_id: str,
        amount_minor_units: int,
        reason: str,
    ) -> RefundResult:
        body = self._post(
            "/refunds",
            {"charge": transaction_id, "amount": amount_minor_units, "reason": reason},
            idempotency_key=f"refund-{transaction_id}",
        )
        if body.get("status") == "succeeded":
            return RefundResult(success=True, refund_id=body.get("id"))
        return RefundResult(success=False, failure_reason=body.get("failure_reason", "Refund rejected"))

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret or not signature:
            return False
        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    def close(self) -> None:
        self.client.close()

"""Configurable fake payment gateway for development and testing.

Simulates a payment provider without any external calls. The outcome of the
next settlements can be switched at runtime between success, decline,
pending (asynchronous confirmation through the webhook) and timeout.
"""

from uuid import uuid4

from marketplace.gateway.port import (
    GatewayTimeout,
    PaymentGateway,
    RefundResult,
    SettlementResult,
    SettlementStatus,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    MODES = ("succeed", "fail", "pending", "timeout")

    def __init__(self) -> None:
        self.mode: str = "succeed"
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self._settled: dict[str, SettlementResult] = {}

    def configure(self, mode: str = "succeed", failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior at runtime."""
        if mode not in self.MODES:
            raise ValueError(f"Unknown gateway mode {mode!r}")
        self.mode = mode
        self.failure_reason = failure_reason

    def settle(
        self,
        amount_minor_units: int,
        currency: str,
        method_ref: str,
        idempotency_key: str,
    ) -> SettlementResult:
        self.calls.append(
            {
                "method": "settle",
                "amount_minor_units": amount_minor_units,
                "currency": currency,
                "method_ref": method_ref,
                "idempotency_key": idempotency_key,
            }
        )

        # A retried request with the same key gets the original answer
        if idempotency_key in self._settled:
            return self._settled[idempotency_key]

        if self.mode == "timeout":
            raise GatewayTimeout("Fake gateway timed out")

        if self.mode == "fail":
            result = SettlementResult(
                success=False,
                status=SettlementStatus.FAILED.value,
                failure_reason=self.failure_reason,
            )
        else:
            status = SettlementStatus.PENDING if self.mode == "pending" else SettlementStatus.SUCCEEDED
            result = SettlementResult(
                success=True,
                status=status.value,
                transaction_id=f"fake_txn_{uuid4().hex[:12]}",
            )

        self._settled[idempotency_key] = result
        return result

    def refund(
        self,
        transaction_id: str,
        amount_minor_units: int,
        reason: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "transaction_id": transaction_id,
                "amount_minor_units": amount_minor_units,
                "reason": reason,
            }
        )

        if self.mode == "timeout":
            raise GatewayTimeout("Fake gateway timed out")
        if self.mode == "fail":
            return RefundResult(success=False, failure_reason=self.failure_reason)
        return RefundResult(success=True, refund_id=f"fake_ref_{uuid4().hex[:12]}")

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"

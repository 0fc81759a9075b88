"""Payment gateway port (abstract interface).

The marketplace needs only two things from a payment provider: settle a
charge and refund one. Adapters translate this contract to a concrete
provider; ``FakeGateway`` stands in for it in development and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class SettlementStatus(Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


class GatewayError(Exception):
    """The gateway could not be reached or answered with garbage."""


class GatewayTimeout(GatewayError):
    """The gateway did not answer in time. The charge outcome is unknown."""


@dataclass(frozen=True)
class SettlementResult:
    """Result of a settlement attempt."""

    success: bool
    status: str
    transaction_id: str | None = None
    failure_reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == SettlementStatus.PENDING.value


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    refund_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def settle(
        self,
        amount_minor_units: int,
        currency: str,
        method_ref: str,
        idempotency_key: str,
    ) -> SettlementResult:
        """Charge ``amount_minor_units`` (cents) to the payment method."""
        ...

    @abstractmethod
    def refund(
        self,
        transaction_id: str,
        amount_minor_units: int,
        reason: str,
    ) -> RefundResult:
        """Refund (part of) a previous settlement."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

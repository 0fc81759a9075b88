"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- HttpGateway when MARKETPLACE_GATEWAY_URL is configured
"""

from marketplace import config
from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.gateway.http_adapter import HttpGateway
from marketplace.gateway.port import (
    GatewayError,
    GatewayTimeout,
    PaymentGateway,
    RefundResult,
    SettlementResult,
    SettlementStatus,
)

__all__ = [
    "FakeGateway",
    "GatewayError",
    "GatewayTimeout",
    "HttpGateway",
    "PaymentGateway",
    "RefundResult",
    "SettlementResult",
    "SettlementStatus",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway.

    Defaults to HttpGateway when a gateway URL is configured, FakeGateway otherwise.
    """
    global _current_gateway
    if _current_gateway is None:
        url = config.gateway_url()
        if url:
            _current_gateway = HttpGateway(
                base_url=url,
                api_key=config.gateway_api_key(),
                webhook_secret=config.gateway_webhook_secret(),
                timeout=config.gateway_timeout(),
            )
        else:
            _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None

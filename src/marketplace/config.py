"""Runtime settings read from the environment.

Values are read on every call so tests can monkeypatch the environment
without reloading modules.
"""

import os
from decimal import Decimal

DEFAULT_TAX_RATE = Decimal("0.20")
DEFAULT_CURRENCY = "EUR"
DEFAULT_CART_TTL_DAYS = 7
DEFAULT_GATEWAY_TIMEOUT = 10.0
DEFAULT_CHECKOUT_CLAIM_TTL = 300

# Bounds on the number of persistence attempts for a paid order
ORDER_COMMIT_ATTEMPTS = 3


def environment() -> str:
    return os.getenv("PROTEAN_ENV", "development").lower()


def tax_rate() -> Decimal:
    raw = os.getenv("MARKETPLACE_TAX_RATE")
    return Decimal(raw) if raw else DEFAULT_TAX_RATE


def currency() -> str:
    return os.getenv("MARKETPLACE_CURRENCY", DEFAULT_CURRENCY).upper()


def cart_ttl_days() -> int:
    raw = os.getenv("MARKETPLACE_CART_TTL_DAYS")
    return int(raw) if raw else DEFAULT_CART_TTL_DAYS


def gateway_url() -> str | None:
    return os.getenv("MARKETPLACE_GATEWAY_URL") or None


def gateway_api_key() -> str:
    return os.getenv("MARKETPLACE_GATEWAY_API_KEY", "")


def gateway_webhook_secret() -> str:
    return os.getenv("MARKETPLACE_GATEWAY_WEBHOOK_SECRET", "")


def gateway_timeout() -> float:
    raw = os.getenv("MARKETPLACE_GATEWAY_TIMEOUT")
    return float(raw) if raw else DEFAULT_GATEWAY_TIMEOUT


def checkout_claim_ttl() -> int:
    """Seconds after which an abandoned checkout stops blocking its cart."""
    raw = os.getenv("MARKETPLACE_CHECKOUT_CLAIM_TTL")
    return int(raw) if raw else DEFAULT_CHECKOUT_CLAIM_TTL

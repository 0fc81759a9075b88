"""Domain errors raised by the fulfillment core.

Every caller-facing error is a ``ValidationError`` keyed by the field it
concerns, so the FastAPI exception handlers turn them into HTTP 400
responses carrying the field and message. ``OrderNotPersisted`` is a server
fault and surfaces as a 500.
"""

from protean.exceptions import ValidationError


class MarketplaceError(ValidationError):
    """Base class for fulfillment errors."""

    field = "marketplace"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__({self.field: [message]})


class EmptyCart(MarketplaceError):
    field = "cart"

    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message)


class ProductUnavailable(MarketplaceError):
    field = "product_id"

    def __init__(self, product_id: str, reason: str = "is not available") -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} {reason}")


class InsufficientStock(MarketplaceError):
    field = "quantity"

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Product {product_id}: requested {requested}, only {available} available")


class PaymentFailed(MarketplaceError):
    field = "payment"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Payment failed: {reason}")


class InvalidPromotion(MarketplaceError):
    field = "coupon_code"


class InvalidStatusTransition(MarketplaceError):
    field = "status"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class RefundNotEligible(MarketplaceError):
    field = "refund"


class CheckoutInProgress(MarketplaceError):
    field = "cart"

    def __init__(self, message: str = "A checkout of this cart is already in progress") -> None:
        super().__init__(message)


class OrderNumberTaken(MarketplaceError):
    field = "order_number"

    def __init__(self, order_number: str) -> None:
        self.order_number = order_number
        super().__init__(f"Order number {order_number} belongs to another order")


class OrderNotPersisted(Exception):
    """A paid order could not be stored and read back. Needs manual reconciliation."""

    def __init__(self, order_number: str) -> None:
        self.order_number = order_number
        super().__init__(f"Order {order_number} was not persisted")

"""Marketplace bounded context — carts, pricing, activation codes and orders.

Handles the order fulfillment core of the digital-goods storefront: turning a
cart into a priced, paid, code-allocated order, and the post-commit status and
refund lifecycle of that order.
"""

import structlog
from protean.domain import Domain

marketplace = Domain(name="marketplace")

logger = structlog.get_logger(__name__)

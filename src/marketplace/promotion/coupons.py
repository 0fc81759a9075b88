"""Coupon book — read-side checks and locked reservation of promotions."""

import json
from datetime import UTC, datetime

import structlog
from protean.utils.globals import current_domain

from marketplace.errors import InvalidPromotion
from marketplace.order.order import Order
from marketplace.promotion.promotion import Promotion, customer_types
from marketplace.promotion.redemption import RedeemPromotion, ReleasePromotion
from marketplace.utils.dispatch import dispatch
from marketplace.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

promotion_locks = KeyedLocks()


def promotion_key(code) -> str:
    return f"promotion:{code.strip().upper()}"


class CouponBook:
    def __init__(self, locks: KeyedLocks | None = None) -> None:
        self.locks = locks or promotion_locks

    def find(self, code) -> Promotion | None:
        return current_domain.repository_for(Promotion).by_code(code)

    def customer_types(self, customer_id, is_plus_member=False) -> frozenset[str]:
        """Classify the requester for audience rules. Guests are always new."""
        has_ordered = bool(customer_id) and bool(current_domain.repository_for(Order).for_customer(customer_id))
        return customer_types(has_ordered, is_plus_member)

    def validate(self, code, customer_id, subtotal, now=None, types=None) -> Promotion:
        """Return the promotion behind ``code`` if it applies, else raise ``InvalidPromotion``."""
        promotion = self.find(code)
        if promotion is None:
            raise InvalidPromotion(f"Unknown coupon {code}")

        prior_uses = promotion.usage_count_for(customer_id) if customer_id else None
        reason = promotion.rejection_reason(now or datetime.now(UTC), prior_uses, subtotal, types, customer_id)
        if reason is not None:
            raise InvalidPromotion(reason)
        return promotion

    def redeem(self, code, order_id, customer_id, discount_amount, subtotal, types=None) -> int:
        """Reserve one use of ``code`` for ``order_id``.

        The usage checks run again under the promotion's lock, so of two
        checkouts racing for the last use only one gets it; the other raises
        ``InvalidPromotion``. Returns the new usage count.
        """
        with self.locks.hold(promotion_key(code)):
            times_used = dispatch(
                RedeemPromotion(
                    code=code,
                    order_id=str(order_id),
                    customer_id=str(customer_id) if customer_id else None,
                    discount_amount=str(discount_amount),
                    subtotal=str(subtotal),
                    customer_types=json.dumps(sorted(types)) if types is not None else None,
                ),
            )
        logger.info("coupon_redeemed", code=code, order_id=str(order_id), times_used=times_used)
        return times_used

    def release(self, code, order_id) -> bool:
        """Undo the reservation held by ``order_id``. Safe to call more than once."""
        with self.locks.hold(promotion_key(code)):
            released = dispatch(ReleasePromotion(code=code, order_id=str(order_id)))
        if released:
            logger.info("coupon_released", code=code, order_id=str(order_id))
        return released

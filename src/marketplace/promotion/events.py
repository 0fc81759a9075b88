"""Domain events for the Promotion aggregate."""

from protean.fields import Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Promotion")
class PromotionCreated:
    """A new coupon code was created."""

    __version__ = 1

    promotion_id = Identifier(required=True)
    code = String(required=True, max_length=50)
    discount_type = String(required=True, max_length=20)
    value = String(required=True, max_length=20)


@marketplace.event(part_of="Promotion")
class PromotionRedeemed:
    """A coupon was redeemed by a committed order."""

    __version__ = 1

    promotion_id = Identifier(required=True)
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    customer_id = Identifier()
    discount_amount = String(required=True, max_length=20)
    times_used = Integer(required=True)


@marketplace.event(part_of="Promotion")
class PromotionReleased:
    """A redemption was undone because its checkout did not go through."""

    __version__ = 1

    promotion_id = Identifier(required=True)
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    times_used = Integer(required=True)

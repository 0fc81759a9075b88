"""Promotion management — commands, handler and repository.

Checkout reserves a coupon with ``RedeemPromotion`` before it charges the
customer and gives it back with ``ReleasePromotion`` when the charge or the
order does not go through. Callers hold the promotion's lock around both, so
the usage checks below see every earlier redemption.
"""

import json
from datetime import UTC, datetime

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import InvalidPromotion
from marketplace.pricing.calculator import DiscountType
from marketplace.promotion.promotion import Promotion, TargetAudience


@marketplace.command(part_of="Promotion")
class CreatePromotion:
    code = String(required=True, max_length=50)
    name = String(max_length=255)
    discount_type = String(choices=DiscountType, required=True)
    value = String(required=True, max_length=20)
    min_purchase = String(max_length=20)
    max_discount = String(max_length=20)
    usage_limit = Integer(min_value=1)
    usage_per_user = Integer(default=1, min_value=1)
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
    eligible_products = Text()  # JSON array of product ids
    exclude_sale_items = Boolean(default=False)
    exclude_plus_discount = Boolean(default=False)
    user_types = Text()  # JSON array; defaults to new and existing customers
    target_audience = String(choices=TargetAudience, default=TargetAudience.ALL.value)
    specific_customers = Text()  # JSON array of customer ids


@marketplace.command(part_of="Promotion")
class RedeemPromotion:
    """Reserve one use of a coupon for the order a checkout is about to charge."""

    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    customer_id = Identifier()
    discount_amount = String(required=True, max_length=20)
    subtotal = String(required=True, max_length=20)
    customer_types = Text()  # JSON array of CustomerType values


@marketplace.command(part_of="Promotion")
class ReleasePromotion:
    """Give back the use reserved for an order that was never placed."""

    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)


@marketplace.repository(part_of=Promotion)
class PromotionRepository:
    def by_code(self, code) -> Promotion | None:
        if not code:
            return None
        results = self._dao.query.filter(code=code.strip().upper()).all().items
        return results[0] if results else None


def _loads(raw):
    return json.loads(raw) if raw else None


@marketplace.command_handler(part_of=Promotion)
class PromotionHandler:
    @handle(CreatePromotion)
    def create_promotion(self, command):
        repo = current_domain.repository_for(Promotion)
        if repo.by_code(command.code) is not None:
            raise ValidationError({"code": [f"Coupon {command.code.upper()} already exists"]})

        promotion = Promotion.create(
            code=command.code,
            name=command.name,
            discount_type=command.discount_type,
            value=command.value,
            min_purchase=command.min_purchase,
            max_discount=command.max_discount,
            usage_limit=command.usage_limit,
            usage_per_user=command.usage_per_user,
            starts_at=command.starts_at,
            ends_at=command.ends_at,
            eligible_products=_loads(command.eligible_products),
            exclude_sale_items=command.exclude_sale_items,
            exclude_plus_discount=command.exclude_plus_discount,
            user_types=_loads(command.user_types),
            target_audience=command.target_audience,
            specific_customers=_loads(command.specific_customers),
        )
        repo.add(promotion)
        return str(promotion.id)

    @handle(RedeemPromotion)
    def redeem_promotion(self, command):
        repo = current_domain.repository_for(Promotion)
        promotion = repo.by_code(command.code)
        if promotion is None:
            raise InvalidPromotion(f"Unknown coupon {command.code}")
        if promotion.is_used_by(command.order_id):
            return promotion.times_used

        # The coupon was validated before pricing; usage may have moved since
        prior_uses = promotion.usage_count_for(command.customer_id) if command.customer_id else None
        reason = promotion.rejection_reason(
            datetime.now(UTC),
            prior_uses,
            command.subtotal,
            _loads(command.customer_types),
            command.customer_id,
        )
        if reason is not None:
            raise InvalidPromotion(reason)

        promotion.use_code(
            order_id=command.order_id,
            customer_id=command.customer_id,
            discount_amount=command.discount_amount,
        )
        repo.add(promotion)
        return promotion.times_used

    @handle(ReleasePromotion)
    def release_promotion(self, command):
        repo = current_domain.repository_for(Promotion)
        promotion = repo.by_code(command.code)
        if promotion is None or not promotion.release_code(command.order_id):
            return False
        repo.add(promotion)
        return True

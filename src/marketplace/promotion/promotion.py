"""Promotion aggregate — coupon codes and their redemption history.

Whether a coupon applies is a pure question over (now, how often this customer
has used it, cart subtotal, what kind of customer they are) and never touches
stored state. Which cart lines it discounts is part of its pricing ``rule``.

The mutations are ``use_code``, applied when a checkout reserves the coupon
before charging, and ``release_code``, applied when that checkout does not
go through.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from marketplace.domain import marketplace
from marketplace.pricing.calculator import DiscountRule, DiscountType
from marketplace.promotion.events import PromotionCreated, PromotionRedeemed, PromotionReleased
from marketplace.utils.money import ZERO, as_utc, format_money, to_money



class CustomerType(Enum):
    NEW = "new"
    EXISTING = "existing"
    PLUS = "plus"


class TargetAudience(Enum):
    ALL = "all"
    NEW_USERS = "new-users"
    PLUS_MEMBERS = "plus-members"
    SPECIFIC_USERS = "specific-users"


DEFAULT_USER_TYPES = (CustomerType.NEW.value, CustomerType.EXISTING.value)


def customer_types(has_ordered_before: bool, is_plus_member: bool) -> frozenset[str]:
    """Classify a customer. Guests and first-time buyers are ``new``."""
    types = {CustomerType.EXISTING.value if has_ordered_before else CustomerType.NEW.value}
    if is_plus_member:
        types.add(CustomerType.PLUS.value)
    return frozenset(types)


def _json_list(raw) -> list[str]:
    return [str(v) for v in json.loads(raw)] if raw else []


@marketplace.entity(part_of="Promotion")
class PromotionUsage:
    customer_id = Identifier()
    order_id = Identifier(required=True)
    discount_amount = String(max_length=20, default="0.00")
    used_at = DateTime()


@marketplace.aggregate
class Promotion:
    code = String(required=True, max_length=50, unique=True)
    name = String(max_length=255)
    discount_type = String(choices=DiscountType, required=True)
    value = String(required=True, max_length=20)
    min_purchase = String(max_length=20, default="0.00")
    max_discount = String(max_length=20)
    usage_limit = Integer(min_value=1)
    usage_per_user = Integer(default=1, min_value=1)
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
    is_active = Boolean(default=True)
    times_used = Integer(default=0, min_value=0)
    usage_history = HasMany(PromotionUsage)

    # Eligibility
    eligible_products = Text()  # JSON array of product ids; empty means every product
    exclude_sale_items = Boolean(default=False)
    exclude_plus_discount = Boolean(default=False)
    user_types = Text(default=json.dumps(list(DEFAULT_USER_TYPES)))  # JSON array of CustomerType values
    target_audience = String(choices=TargetAudience, default=TargetAudience.ALL.value)
    specific_customers = Text()  # JSON array of customer ids, for specific-users

    @invariant.post
    def validity_window_must_be_ordered(self):
        if self.starts_at and self.ends_at and as_utc(self.ends_at) <= as_utc(self.starts_at):
            raise ValidationError({"ends_at": ["End date must be after start date"]})

    @invariant.post
    def value_must_fit_discount_type(self):
        try:
            value = Decimal(self.value)
        except (InvalidOperation, TypeError):
            raise ValidationError({"value": [f"{self.value!r} is not a number"]}) from None
        if value <= 0:
            raise ValidationError({"value": ["Discount value must be positive"]})
        if self.discount_type == DiscountType.PERCENTAGE.value and value > 100:
            raise ValidationError({"value": ["Percentage discount cannot exceed 100"]})

    @invariant.post
    def times_used_matches_history(self):
        if self.times_used != len(self.usage_history):
            raise ValidationError({"times_used": ["Usage counter is out of step with the usage history"]})

    @invariant.post
    def usage_must_stay_within_limit(self):
        if self.usage_limit is not None and self.times_used > self.usage_limit:
            raise ValidationError({"times_used": [f"Coupon cannot be used more than {self.usage_limit} times"]})

    @invariant.post
    def audience_must_be_well_formed(self):
        unknown = set(self.user_type_list) - {t.value for t in CustomerType}
        if not self.user_type_list or unknown:
            raise ValidationError({"user_types": [f"User types must be drawn from {[t.value for t in CustomerType]}"]})
        if self.target_audience == TargetAudience.SPECIFIC_USERS.value and not self.customer_list:
            raise ValidationError({"specific_customers": ["A specific-users coupon needs at least one customer"]})

    @classmethod
    def create(
        cls,
        code,
        discount_type,
        value,
        starts_at,
        ends_at,
        name=None,
        min_purchase=None,
        max_discount=None,
        usage_limit=None,
        usage_per_user=1,
        eligible_products=None,
        exclude_sale_items=False,
        exclude_plus_discount=False,
        user_types=None,
        target_audience=None,
        specific_customers=None,
    ):
        promotion = cls(
            code=code.strip().upper(),
            name=name or code.strip().upper(),
            discount_type=discount_type,
            value=str(value),
            min_purchase=format_money(min_purchase or 0),
            max_discount=format_money(max_discount) if max_discount is not None else None,
            usage_limit=usage_limit,
            usage_per_user=usage_per_user,
            starts_at=starts_at,
            ends_at=ends_at,
            is_active=True,
            times_used=0,
            eligible_products=json.dumps([str(p) for p in eligible_products]) if eligible_products else None,
            exclude_sale_items=bool(exclude_sale_items),
            exclude_plus_discount=bool(exclude_plus_discount),
            user_types=json.dumps(list(user_types or DEFAULT_USER_TYPES)),
            target_audience=target_audience or TargetAudience.ALL.value,
            specific_customers=json.dumps([str(c) for c in specific_customers]) if specific_customers else None,
        )
        promotion.raise_(
            PromotionCreated(
                promotion_id=str(promotion.id),
                code=promotion.code,
                discount_type=promotion.discount_type,
                value=promotion.value,
            )
        )
        return promotion

    # -------------------------------------------------------------------
    # Validity
    # -------------------------------------------------------------------
    @property
    def product_list(self) -> list[str]:
        return _json_list(self.eligible_products)

    @property
    def user_type_list(self) -> list[str]:
        return _json_list(self.user_types)

    @property
    def customer_list(self) -> list[str]:
        return _json_list(self.specific_customers)

    def rule(self) -> DiscountRule:
        return DiscountRule(
            type=DiscountType(self.discount_type),
            value=Decimal(self.value),
            min_purchase=to_money(self.min_purchase),
            max_discount=to_money(self.max_discount) if self.max_discount else None,
            eligible_products=frozenset(self.product_list) if self.product_list else None,
            exclude_sale_items=bool(self.exclude_sale_items),
            exclude_plus_discount=bool(self.exclude_plus_discount),
        )

    def usage_count_for(self, customer_id) -> int:
        if not customer_id:
            return 0
        return sum(1 for u in self.usage_history if str(u.customer_id) == str(customer_id))

    def rejection_reason(self, now, prior_uses, subtotal, types=None, customer_id=None) -> str | None:
        """Why this coupon cannot be applied, or ``None`` when it can.

        ``prior_uses`` is the customer's earlier redemption count; pass
        ``None`` for guests, whose usage cannot be attributed. ``types`` is
        the customer's classification from ``customer_types``; the audience
        rules are only checked when it is given.
        """
        now = as_utc(now)
        if not self.is_active:
            return "Coupon is not active"
        if now < as_utc(self.starts_at):
            return "Coupon is not valid yet"
        if now > as_utc(self.ends_at):
            return "Coupon has expired"
        if self.usage_limit is not None and self.times_used >= self.usage_limit:
            return "Coupon usage limit reached"
        if to_money(subtotal) < to_money(self.min_purchase):
            return f"Minimum purchase of {self.min_purchase} required"
        if prior_uses is not None and prior_uses >= self.usage_per_user:
            return "Coupon already used the maximum number of times"
        if types is not None:
            return self._audience_rejection(types, customer_id)
        return None

    def _audience_rejection(self, types, customer_id) -> str | None:
        if not set(self.user_type_list) & set(types):
            return "Coupon is not available for your account"

        audience = TargetAudience(self.target_audience or TargetAudience.ALL.value)
        if audience == TargetAudience.NEW_USERS and CustomerType.NEW.value not in types:
            return "Coupon is only for new customers"
        if audience == TargetAudience.PLUS_MEMBERS and CustomerType.PLUS.value not in types:
            return "Coupon is only for Plus members"
        if audience == TargetAudience.SPECIFIC_USERS and str(customer_id) not in self.customer_list:
            return "Coupon is not available for your account"
        return None

    def is_valid(self, now, prior_uses, subtotal, types=None, customer_id=None) -> bool:
        return self.rejection_reason(now, prior_uses, subtotal, types, customer_id) is None

    def is_used_by(self, order_id) -> bool:
        return any(str(u.order_id) == str(order_id) for u in self.usage_history)

    # -------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------
    def use_code(self, order_id, customer_id=None, discount_amount=ZERO):
        """Record one redemption of this coupon by ``order_id``."""
        if self.is_used_by(order_id):
            return

        now = datetime.now(UTC)
        with atomic_change(self):
            self.add_usage_history(
                PromotionUsage(
                    customer_id=customer_id,
                    order_id=order_id,
                    discount_amount=format_money(discount_amount),
                    used_at=now,
                )
            )
            self.times_used += 1

        self.raise_(
            PromotionRedeemed(
                promotion_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                customer_id=str(customer_id) if customer_id else None,
                discount_amount=format_money(discount_amount),
                times_used=self.times_used,
            )
        )

    def release_code(self, order_id) -> bool:
        """Undo the redemption by ``order_id``. Returns whether there was one."""
        usage = next((u for u in self.usage_history if str(u.order_id) == str(order_id)), None)
        if usage is None:
            return False

        with atomic_change(self):
            self.remove_usage_history(usage)
            self.times_used -= 1

        self.raise_(
            PromotionReleased(
                promotion_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                times_used=self.times_used,
            )
        )
        return True

    def deactivate(self):
        self.is_active = False

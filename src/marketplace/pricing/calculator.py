"""Pricing calculator.

Pure functions over frozen dataclasses: no clock, no randomness and no I/O.
The same lines, membership flag, discount rule and tax rate always produce
the same ``PriceBreakdown``, which is what lets a stored order be re-priced
for audit or refund.

All money is ``Decimal`` and every rounding step is half-up to cents:

    unit_price  = sale_price if it is set and > 0, else base_price
    user_price  = unit_price * (1 - plus_discount_pct / 100)   (plus members)
    line_total  = user_price * quantity
    subtotal    = sum(line_total)
    base        = sum(line_total) over the lines the discount applies to
    discount    = percentage of base or fixed amount, capped, clipped to [0, base]
    tax         = (subtotal - discount) * tax_rate
    total       = subtotal - discount + tax
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from marketplace.config import DEFAULT_TAX_RATE
from marketplace.utils.money import ZERO, to_money


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class PricingLine:
    product_id: str
    quantity: int
    base_price: Decimal
    sale_price: Decimal | None = None
    plus_discount_pct: Decimal = ZERO


@dataclass(frozen=True)
class DiscountRule:
    """The pricing-relevant part of a promotion."""

    type: DiscountType
    value: Decimal
    min_purchase: Decimal = ZERO
    max_discount: Decimal | None = None
    eligible_products: frozenset[str] | None = None  # None means every product
    exclude_sale_items: bool = False
    exclude_plus_discount: bool = False

    @property
    def is_restricted(self) -> bool:
        return self.eligible_products is not None or self.exclude_sale_items or self.exclude_plus_discount

    def applies_to(self, line: PricingLine, is_plus_member: bool) -> bool:
        if self.eligible_products is not None and str(line.product_id) not in self.eligible_products:
            return False
        if self.exclude_sale_items and unit_price_for(line) != to_money(line.base_price):
            return False
        if self.exclude_plus_discount and user_price_for(line, is_plus_member) != unit_price_for(line):
            return False
        return True


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    user_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal
    discount_base: Decimal = ZERO

    def line_for(self, product_id: str) -> PricedLine | None:
        return next((line for line in self.lines if line.product_id == product_id), None)


def unit_price_for(line: PricingLine) -> Decimal:
    if line.sale_price is not None and Decimal(line.sale_price) > 0:
        return to_money(line.sale_price)
    return to_money(line.base_price)


def user_price_for(line: PricingLine, is_plus_member: bool) -> Decimal:
    unit_price = unit_price_for(line)
    pct = Decimal(line.plus_discount_pct or 0)
    if is_plus_member and pct > 0:
        return to_money(unit_price * (1 - pct / 100))
    return unit_price


def discount_for(subtotal: Decimal, rule: DiscountRule | None, base: Decimal | None = None) -> Decimal:
    """Discount granted by ``rule``, never negative and never above ``base``.

    ``base`` is the part of ``subtotal`` the rule applies to and defaults to
    all of it. The minimum purchase is checked against the whole subtotal.
    """
    if rule is None:
        return ZERO
    if subtotal < to_money(rule.min_purchase or 0):
        return ZERO

    base = subtotal if base is None else to_money(base)
    if rule.type == DiscountType.PERCENTAGE:
        discount = to_money(base * Decimal(rule.value) / 100)
    else:
        discount = to_money(rule.value)

    if rule.max_discount is not None:
        discount = min(discount, to_money(rule.max_discount))

    return max(ZERO, min(discount, base))


def compute_price(lines, is_plus_member, rule=None, tax_rate=DEFAULT_TAX_RATE) -> PriceBreakdown:
    """Price a set of cart lines for a customer."""
    priced = []
    base = ZERO
    for line in lines:
        user_price = user_price_for(line, is_plus_member)
        priced.append(
            PricedLine(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=unit_price_for(line),
                user_price=user_price,
                line_total=to_money(user_price * line.quantity),
            )
        )
        if rule is None or rule.applies_to(line, is_plus_member):
            base += priced[-1].line_total

    subtotal = to_money(sum((p.line_total for p in priced), ZERO))
    discount = discount_for(subtotal, rule, base=base)
    rate = Decimal(str(tax_rate))
    tax = to_money((subtotal - discount) * rate)

    return PriceBreakdown(
        lines=tuple(priced),
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=to_money(subtotal - discount + tax),
        tax_rate=rate,
        discount_base=to_money(base),
    )

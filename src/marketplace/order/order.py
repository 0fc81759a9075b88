"""Order aggregate — the authoritative record of a checkout.

An order captures, at the moment of purchase, what was bought and at what
price, how it was paid, which activation codes were issued and where it
stands in its lifecycle. Items and the pricing snapshot never change after
placement; only code delivery, payment, refund and status move on.

State machine:
    pending → processing | confirmed | cancelled
    processing → confirmed | cancelled
    confirmed → shipped | delivered | cancelled | refunded
    shipped → delivered | refunded
    delivered → refunded
    cancelled, refunded are terminal

Every status change appends an entry to the timeline; entries are never
edited or removed.
"""

import json
import secrets
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.errors import InvalidStatusTransition, RefundNotEligible
from marketplace.order.events import (
    OrderCodesDelivered,
    OrderCodesMissing,
    OrderPaymentConfirmed,
    OrderPaymentFailed,
    OrderPlaced,
    OrderStatusChanged,
    RefundApproved,
    RefundCompleted,
    RefundDenied,
    RefundRequested,
)
from marketplace.utils.money import ZERO, format_money, to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    COMPLETED = "completed"
    DENIED = "denied"


MOCK_PAYMENT_METHOD = "mock_payment"


class Actor(Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# States from which cancellation is allowed
_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CONFIRMED}

# Refund decisions an administrator can take from each refund state
_REFUND_DECISIONS = {
    RefundStatus.REQUESTED: {RefundStatus.APPROVED, RefundStatus.DENIED, RefundStatus.COMPLETED},
    RefundStatus.APPROVED: {RefundStatus.COMPLETED, RefundStatus.DENIED},
}


def can_transition(current, target) -> bool:
    return OrderStatus(target) in _VALID_TRANSITIONS[OrderStatus(current)]


def generate_order_number(now=None) -> str:
    """External order reference, e.g. ``ORD-20261019-8F3A12C4``."""
    now = now or datetime.now(UTC)
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class OrderPricing:
    """Financial summary of an order, frozen at checkout.

    Amounts are decimal strings with two fraction digits so the stored
    figures reproduce the computed ones exactly.
    """

    subtotal = String(required=True, max_length=20)
    discount = String(default="0.00", max_length=20)
    tax = String(default="0.00", max_length=20)
    total = String(required=True, max_length=20)
    tax_rate = String(default="0.20", max_length=10)
    currency = String(max_length=3, default="EUR")

    def amount(self, name) -> Decimal:
        return to_money(getattr(self, name))


@marketplace.value_object(part_of="Order")
class PaymentDetails:
    method = String(required=True, max_length=50)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    transaction_id = String(max_length=255)
    paid_at = DateTime()
    failure_reason = String(max_length=500)


@marketplace.value_object(part_of="Order")
class RefundDetails:
    status = String(choices=RefundStatus, default=RefundStatus.NONE.value)
    amount = String(max_length=20)
    reason = String(max_length=1000)
    requested_at = DateTime()
    processed_at = DateTime()
    refund_id = String(max_length=255)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderItem:
    """One purchased product with the prices it was sold at.

    ``code_delivered`` is False for a limited product whose codes could not
    be allocated after payment; such items wait for manual reconciliation.
    A full refund moves the item's codes to ``revoked_codes``.
    """

    product_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = String(required=True, max_length=20)
    user_price = String(required=True, max_length=20)
    line_total = String(required=True, max_length=20)
    inventory_mode = String(max_length=20, default="unlimited")
    code_delivered = Boolean(default=False)
    codes = Text()  # JSON array of activation codes
    revoked_codes = Text()  # JSON array of codes taken back by a full refund

    @property
    def is_limited(self) -> bool:
        return self.inventory_mode == "limited"

    @property
    def code_list(self) -> list[str]:
        return json.loads(self.codes) if self.codes else []

    @property
    def revoked_code_list(self) -> list[str]:
        return json.loads(self.revoked_codes) if self.revoked_codes else []


@marketplace.entity(part_of="Order")
class TimelineEntry:
    sequence = Integer(required=True, min_value=0)
    status = String(required=True, max_length=20)
    timestamp = DateTime(required=True)
    note = String(max_length=1000)
    actor = String(max_length=50, default=Actor.SYSTEM.value)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(required=True, max_length=50, unique=True)
    customer_id = Identifier()  # Nullable for guest checkout
    session_id = String(max_length=255)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    items = HasMany(OrderItem)
    pricing = ValueObject(OrderPricing)
    payment = ValueObject(PaymentDetails)
    refund = ValueObject(RefundDetails)
    timeline = HasMany(TimelineEntry)
    coupon_code = String(max_length=50)
    is_plus_member = Boolean(default=False)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def pricing_must_balance(self):
        if self.pricing is None:
            return
        subtotal = self.pricing.amount("subtotal")
        discount = self.pricing.amount("discount")
        tax = self.pricing.amount("tax")
        if subtotal - discount + tax != self.pricing.amount("total"):
            raise ValidationError({"pricing": ["Total must equal subtotal - discount + tax"]})
        if self.items and sum((to_money(i.line_total) for i in self.items), ZERO) != subtotal:
            raise ValidationError({"pricing": ["Subtotal must equal the sum of line totals"]})

    @invariant.post
    def refund_cannot_exceed_total(self):
        if self.refund is None or not self.refund.amount or self.pricing is None:
            return
        if to_money(self.refund.amount) > self.pricing.amount("total"):
            raise ValidationError({"refund": ["Refund amount cannot exceed the order total"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number,
        items_data,
        pricing,
        payment,
        customer_id=None,
        session_id=None,
        coupon_code=None,
        is_plus_member=False,
        order_id=None,
    ):
        """Record a paid (or payment-pending) checkout.

        Args:
            items_data: List of dicts with product_id, title, quantity,
                        unit_price, user_price, line_total, inventory_mode
                        and optionally codes, or code_error when
                        allocation failed after payment.
            pricing: Dict with subtotal, discount, tax, total, tax_rate, currency.
            payment: Dict with method, status, transaction_id, paid_at.
        """
        now = datetime.now(UTC)
        paid = payment.get("status") == PaymentStatus.COMPLETED.value

        extra = {"id": order_id} if order_id else {}
        order = cls(
            order_number=order_number,
            customer_id=customer_id,
            session_id=session_id,
            status=OrderStatus.PENDING.value,
            pricing=OrderPricing(
                subtotal=format_money(pricing["subtotal"]),
                discount=format_money(pricing.get("discount", ZERO)),
                tax=format_money(pricing.get("tax", ZERO)),
                total=format_money(pricing["total"]),
                tax_rate=str(pricing.get("tax_rate", "0.20")),
                currency=pricing.get("currency", "EUR"),
            ),
            payment=PaymentDetails(
                method=payment["method"],
                status=payment.get("status", PaymentStatus.PENDING.value),
                transaction_id=payment.get("transaction_id"),
                paid_at=payment.get("paid_at") or (now if paid else None),
            ),
            refund=RefundDetails(status=RefundStatus.NONE.value),
            coupon_code=coupon_code,
            is_plus_member=is_plus_member,
            created_at=now,
            updated_at=now,
            **extra,
        )

        with atomic_change(order):
            for item in items_data:
                codes = item.get("codes") or []
                limited = item.get("inventory_mode") == "limited"
                order.add_items(
                    OrderItem(
                        product_id=item["product_id"],
                        title=item["title"],
                        quantity=item["quantity"],
                        unit_price=format_money(item["unit_price"]),
                        user_price=format_money(item["user_price"]),
                        line_total=format_money(item["line_total"]),
                        inventory_mode=item.get("inventory_mode", "unlimited"),
                        code_delivered=item.get("code_delivered", bool(codes) or not limited),
                        codes=json.dumps(codes),
                    )
                )
            order._append_timeline(OrderStatus.PENDING.value, "Order placed", Actor.SYSTEM.value, now)
            if paid:
                order.status = OrderStatus.CONFIRMED.value
                order._append_timeline(OrderStatus.CONFIRMED.value, "Payment received", Actor.SYSTEM.value, now)

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id) if customer_id else None,
                status=order.status,
                total=order.pricing.total,
                currency=order.pricing.currency,
                placed_at=now,
            )
        )

        for item in items_data:
            if item.get("code_error"):
                order.flag_missing_codes(item["product_id"], item["code_error"])
        return order

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def total(self) -> Decimal:
        return self.pricing.amount("total")

    @property
    def can_be_cancelled(self) -> bool:
        return OrderStatus(self.status) in _CANCELLABLE_STATES

    @property
    def can_be_refunded(self) -> bool:
        return (
            self.payment is not None
            and self.payment.status == PaymentStatus.COMPLETED.value
            and (self.refund is None or self.refund.status == RefundStatus.NONE.value)
        )

    @property
    def refund_is_full(self) -> bool:
        return self.refund is not None and bool(self.refund.amount) and to_money(self.refund.amount) >= self.total

    @property
    def awaits_codes(self) -> bool:
        return any(i.is_limited and not i.code_delivered for i in self.items)

    def sorted_timeline(self) -> list:
        return sorted(self.timeline, key=lambda e: e.sequence)

    def item_for(self, product_id):
        return next((i for i in self.items if str(i.product_id) == str(product_id)), None)

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _append_timeline(self, status, note, actor, now=None):
        self.add_timeline(
            TimelineEntry(
                sequence=len(self.timeline),
                status=status,
                timestamp=now or datetime.now(UTC),
                note=note,
                actor=actor,
            )
        )

    def _assert_can_transition(self, target_status):
        """Validate that the current state allows transition to target."""
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition(current.value, target_status.value)

    def transition_to(self, target, note=None, actor=Actor.SYSTEM.value):
        """Move the order to ``target`` and record the change on the timeline."""
        target_status = OrderStatus(target)
        self._assert_can_transition(target_status)

        previous = self.status
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = target_status.value
            self._append_timeline(target_status.value, note, actor, now)
            self.updated_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                new_status=target_status.value,
                actor=actor,
                note=note,
                changed_at=now,
            )
        )

    def cancel(self, reason=None, actor=Actor.CUSTOMER.value):
        if not self.can_be_cancelled:
            raise InvalidStatusTransition(self.status, OrderStatus.CANCELLED.value)
        self.transition_to(OrderStatus.CANCELLED.value, note=reason or "Order cancelled", actor=actor)

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def confirm_payment(self, transaction_id=None) -> bool:
        """Mark the payment completed and confirm the order.

        Returns False without changing anything when the payment was already
        completed.
        """
        if self.payment.status == PaymentStatus.COMPLETED.value:
            return False
        if self.payment.status != PaymentStatus.PENDING.value:
            raise ValidationError({"payment": [f"Cannot confirm a {self.payment.status} payment"]})

        now = datetime.now(UTC)
        self.payment = PaymentDetails(
            method=self.payment.method,
            status=PaymentStatus.COMPLETED.value,
            transaction_id=transaction_id or self.payment.transaction_id,
            paid_at=now,
        )
        self.raise_(
            OrderPaymentConfirmed(
                order_id=str(self.id),
                order_number=self.order_number,
                transaction_id=self.payment.transaction_id,
                paid_at=now,
            )
        )
        if can_transition(self.status, OrderStatus.CONFIRMED.value):
            self.transition_to(OrderStatus.CONFIRMED.value, note="Payment received", actor=Actor.SYSTEM.value)
        return True

    def fail_payment(self, reason):
        """Record a payment the gateway declined after the fact, and cancel the order."""
        if self.payment.status == PaymentStatus.FAILED.value:
            return
        if self.payment.status != PaymentStatus.PENDING.value:
            raise ValidationError({"payment": [f"Cannot fail a {self.payment.status} payment"]})

        self.payment = PaymentDetails(
            method=self.payment.method,
            status=PaymentStatus.FAILED.value,
            transaction_id=self.payment.transaction_id,
            failure_reason=reason,
        )
        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
            )
        )
        if self.can_be_cancelled:
            self.transition_to(OrderStatus.CANCELLED.value, note=f"Payment failed: {reason}", actor=Actor.SYSTEM.value)

    # -------------------------------------------------------------------
    # Code delivery
    # -------------------------------------------------------------------
    def record_codes(self, product_id, codes):
        item = self.item_for(product_id)
        if item is None:
            raise ValidationError({"product_id": [f"Product {product_id} is not part of this order"]})

        with atomic_change(self):
            item.codes = json.dumps(list(codes))
            item.code_delivered = True
            self.updated_at = datetime.now(UTC)

        self.raise_(
            OrderCodesDelivered(
                order_id=str(self.id),
                order_number=self.order_number,
                product_id=str(product_id),
                count=len(codes),
            )
        )

    def flag_missing_codes(self, product_id, reason):
        """Leave the item undelivered and note it on the timeline for an operator."""
        item = self.item_for(product_id)
        if item is None:
            raise ValidationError({"product_id": [f"Product {product_id} is not part of this order"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            item.code_delivered = False
            self._append_timeline(
                self.status,
                f"Codes for {product_id} not delivered: {reason}. Needs manual reconciliation",
                Actor.SYSTEM.value,
                now,
            )
            self.updated_at = now

        self.raise_(
            OrderCodesMissing(
                order_id=str(self.id),
                order_number=self.order_number,
                product_id=str(product_id),
                reason=reason,
            )
        )

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def request_refund(self, reason, amount=None, actor=Actor.CUSTOMER.value):
        if not self.can_be_refunded:
            raise RefundNotEligible(
                f"Order {self.order_number} cannot be refunded "
                f"(payment {self.payment.status}, refund {self.refund.status})"
            )

        refund_amount = to_money(amount) if amount is not None else self.total
        if refund_amount <= 0 or refund_amount > self.total:
            raise RefundNotEligible(f"Refund amount must be between 0.01 and {format_money(self.total)}")

        now = datetime.now(UTC)
        with atomic_change(self):
            self.refund = RefundDetails(
                status=RefundStatus.REQUESTED.value,
                amount=format_money(refund_amount),
                reason=reason,
                requested_at=now,
            )
            self._append_timeline(self.status, f"Refund requested: {reason}", actor, now)
            self.updated_at = now

        self.raise_(
            RefundRequested(
                order_id=str(self.id),
                order_number=self.order_number,
                amount=self.refund.amount,
                reason=reason,
                requested_at=now,
            )
        )

    def assert_refund_decision(self, decision):
        current = RefundStatus(self.refund.status)
        target = RefundStatus(decision)
        if target not in _REFUND_DECISIONS.get(current, set()):
            raise RefundNotEligible(f"Cannot move refund from {current.value} to {target.value}")

    def _resolve_refund(self, status, now, refund_id=None):
        self.refund = RefundDetails(
            status=status,
            amount=self.refund.amount,
            reason=self.refund.reason,
            requested_at=self.refund.requested_at,
            processed_at=now,
            refund_id=refund_id or self.refund.refund_id,
        )

    def approve_refund(self, actor=Actor.ADMIN.value, note=None):
        self.assert_refund_decision(RefundStatus.APPROVED.value)
        now = datetime.now(UTC)
        with atomic_change(self):
            self._resolve_refund(RefundStatus.APPROVED.value, now)
            self._append_timeline(self.status, note or "Refund approved", actor, now)
            self.updated_at = now
        self.raise_(RefundApproved(order_id=str(self.id), order_number=self.order_number, actor=actor))

    def deny_refund(self, actor=Actor.ADMIN.value, note=None):
        self.assert_refund_decision(RefundStatus.DENIED.value)
        now = datetime.now(UTC)
        with atomic_change(self):
            self._resolve_refund(RefundStatus.DENIED.value, now)
            self._append_timeline(self.status, note or "Refund denied", actor, now)
            self.updated_at = now
        self.raise_(RefundDenied(order_id=str(self.id), order_number=self.order_number, actor=actor, note=note))

    def _revoke_codes(self, actor, now):
        revoked = 0
        for item in self.items:
            if not item.is_limited or not item.code_list:
                continue
            revoked += len(item.code_list)
            item.revoked_codes = json.dumps(item.revoked_code_list + item.code_list)
            item.codes = None
        if revoked:
            self._append_timeline(self.status, f"{revoked} activation code(s) revoked", actor, now)

    def complete_refund(self, actor=Actor.ADMIN.value, note=None, refund_id=None):
        """Close the refund: the money went back and the payment is marked refunded.

        The order moves to ``refunded`` where the state machine allows it;
        otherwise the refund is only noted on the timeline. A full refund
        revokes the activation codes of limited items; a partial one leaves
        them with the customer.
        """
        self.assert_refund_decision(RefundStatus.COMPLETED.value)
        refundable = can_transition(self.status, OrderStatus.REFUNDED.value)
        now = datetime.now(UTC)
        with atomic_change(self):
            self._resolve_refund(RefundStatus.COMPLETED.value, now, refund_id=refund_id)
            self.payment = PaymentDetails(
                method=self.payment.method,
                status=PaymentStatus.REFUNDED.value,
                transaction_id=self.payment.transaction_id,
                paid_at=self.payment.paid_at,
            )
            self.updated_at = now
            if self.refund_is_full:
                self._revoke_codes(actor, now)
            if not refundable:
                self._append_timeline(self.status, note or "Refund completed", actor, now)

        if refundable:
            self.transition_to(OrderStatus.REFUNDED.value, note=note or "Refund completed", actor=actor)

        self.raise_(
            RefundCompleted(
                order_id=str(self.id),
                order_number=self.order_number,
                amount=self.refund.amount,
                refund_id=refund_id,
                completed_at=now,
            )
        )

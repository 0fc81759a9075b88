"""Checkout orchestrator — turns a cart into a paid, code-allocated order.

Stages, in order:

    1. claim the requester's cart                   (EmptyCart, CheckoutInProgress)
    2. snapshot the catalogue                       (ProductUnavailable, InsufficientStock)
    3. price the cart, applying a valid coupon      (InvalidPromotion)
    4. reserve the coupon                           (InvalidPromotion)
    5. settle the payment                           (PaymentFailed)
    6. allocate activation codes for limited items
    7. commit the order and read it back            (OrderNotPersisted)
    8. remove what was bought from the cart
    9. notify the customer

A failing stage hands back everything taken before it: the cart claim, the
coupon reservation and any codes already allocated. Once the payment has
settled nothing is raised any more except a failure to commit the order
itself: an allocation shortfall is recorded on the order for manual
reconciliation, and cart cleanup or notification failures are only logged.

The orchestrator owns no state. It never holds a lock across the gateway
call; code pools, carts and coupons are each locked by their own services.
The cart claim keeps a second checkout of the same cart out while this one
waits on the gateway.
"""

import json
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from marketplace import config
from marketplace.cart.store import CartStore
from marketplace.catalogue import get_catalog
from marketplace.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidPromotion,
    OrderNotPersisted,
    OrderNumberTaken,
    PaymentFailed,
    ProductUnavailable,
)
from marketplace.gateway import GatewayError, GatewayTimeout, get_gateway
from marketplace.inventory.ledger import InventoryLedger
from marketplace.notifications import get_notifier
from marketplace.order.order import (
    MOCK_PAYMENT_METHOD,
    Order,
    OrderStatus,
    PaymentStatus,
    generate_order_number,
)
from marketplace.order.payment import ConfirmOrderPayment, FailOrderPayment, order_key, order_locks
from marketplace.order.placement import PlaceOrder, RecordOrderCodes
from marketplace.pricing.calculator import PricingLine, compute_price
from marketplace.promotion.coupons import CouponBook
from marketplace.requester import Requester
from marketplace.utils.dispatch import dispatch
from marketplace.utils.logging import add_context, clear_context
from marketplace.utils.money import to_minor_units

logger = structlog.get_logger(__name__)


class CheckoutService:
    def __init__(
        self,
        catalog=None,
        gateway=None,
        ledger: InventoryLedger | None = None,
        notifier=None,
        carts: CartStore | None = None,
        coupons: CouponBook | None = None,
        tax_rate=None,
        currency: str | None = None,
        clock=None,
    ) -> None:
        self._catalog = catalog
        self._gateway = gateway
        self._notifier = notifier
        self.ledger = ledger or InventoryLedger()
        self.carts = carts or CartStore(catalog=catalog)
        self.coupons = coupons or CouponBook()
        self.tax_rate = tax_rate if tax_rate is not None else config.tax_rate()
        self.currency = currency or config.currency()
        self.clock = clock or (lambda: datetime.now(UTC))

    @property
    def catalog(self):
        return self._catalog or get_catalog()

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    @property
    def notifier(self):
        return self._notifier or get_notifier()

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def place_order(self, requester: Requester, payment_method: str, coupon_code: str | None = None) -> Order:
        now = self.clock()
        order_id = str(uuid4())
        order_number = self._fresh_order_number(now)

        clear_context()
        add_context(order_number=order_number, customer_id=requester.customer_id, session_id=requester.session_id)

        cart = promotion = None
        lines = []
        try:
            cart = self.carts.claim(requester, order_id)
            products = self._snapshot(cart)
            types = self._customer_types(requester, coupon_code)
            breakdown, promotion = self._price(requester, cart, products, coupon_code, now, types)
            if promotion is not None:
                self.coupons.redeem(
                    promotion.code,
                    order_id,
                    requester.customer_id,
                    breakdown.discount,
                    breakdown.subtotal,
                    types,
                )
            payment = self._settle(breakdown.total, order_number, payment_method)

            lines = self._order_lines(cart, products, breakdown)
            if payment["status"] == PaymentStatus.COMPLETED.value:
                self._allocate(lines, order_id, requester.customer_id)

            order = self._commit(
                {
                    "order_id": order_id,
                    "order_number": order_number,
                    "customer_id": requester.customer_id,
                    "session_id": requester.session_id,
                    "items": lines,
                    "pricing": {
                        "subtotal": str(breakdown.subtotal),
                        "discount": str(breakdown.discount),
                        "tax": str(breakdown.tax),
                        "total": str(breakdown.total),
                        "tax_rate": str(breakdown.tax_rate),
                        "currency": self.currency,
                    },
                    "payment": payment,
                    "coupon_code": promotion.code if promotion else None,
                    "is_plus_member": requester.is_plus_member,
                },
                now,
            )
        except Exception:
            self._abandon(order_id, cart, promotion, lines)
            clear_context()
            raise

        try:
            logger.info("order_committed", status=order.status, total=order.pricing.total)
            self._complete_cart(cart, order_id)
            if order.status == OrderStatus.CONFIRMED.value:
                self._notify(order, requester)
            return order
        finally:
            clear_context()

    def preview(self, requester: Requester, coupon_code: str | None = None):
        """Price the requester's cart without touching payment, stock or coupons."""
        cart = self._load_cart(requester)
        products = self._snapshot(cart)
        types = self._customer_types(requester, coupon_code)
        breakdown, _ = self._price(requester, cart, products, coupon_code, self.clock(), types)
        return breakdown

    # -------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------
    def _fresh_order_number(self, now) -> str:
        repo = current_domain.repository_for(Order)
        while True:
            order_number = generate_order_number(now)
            if repo.by_number(order_number) is None:
                return order_number

    def _load_cart(self, requester):
        cart = self.carts.get(requester)
        if cart is None or not cart.items:
            raise EmptyCart()
        return cart

    def _snapshot(self, cart):
        quantities = cart.quantities()
        products = self.catalog.snapshot(list(quantities))

        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise ProductUnavailable(product_id, "does not exist")
            if not product.is_active:
                raise ProductUnavailable(product_id)
            if product.is_limited:
                available = product.available_quantity or 0
                if available < quantity:
                    raise InsufficientStock(product_id, quantity, available)
        return products

    def _customer_types(self, requester, coupon_code):
        if not coupon_code:
            return None
        return self.coupons.customer_types(requester.customer_id, requester.is_plus_member)

    def _price(self, requester, cart, products, coupon_code, now, types=None):
        lines = [
            PricingLine(
                product_id=product_id,
                quantity=quantity,
                base_price=products[product_id].base_price,
                sale_price=products[product_id].sale_price,
                plus_discount_pct=products[product_id].plus_discount_pct,
            )
            for product_id, quantity in cart.quantities().items()
        ]

        if not coupon_code:
            return compute_price(lines, requester.is_plus_member, tax_rate=self.tax_rate), None

        undiscounted = compute_price(lines, requester.is_plus_member, tax_rate=self.tax_rate)
        promotion = self.coupons.validate(
            coupon_code,
            requester.customer_id,
            undiscounted.subtotal,
            now=now,
            types=types,
        )
        rule = promotion.rule()
        breakdown = compute_price(lines, requester.is_plus_member, rule=rule, tax_rate=self.tax_rate)
        if rule.is_restricted and breakdown.discount_base <= 0:
            raise InvalidPromotion("Coupon does not apply to any item in the cart")
        return breakdown, promotion

    def _settle(self, total, order_number, payment_method) -> dict:
        if payment_method == MOCK_PAYMENT_METHOD or total <= 0:
            return {
                "method": payment_method,
                "status": PaymentStatus.COMPLETED.value,
                "transaction_id": f"mock_{order_number}",
            }

        try:
            result = self.gateway.settle(
                to_minor_units(total),
                self.currency,
                payment_method,
                idempotency_key=order_number,
            )
        except GatewayTimeout as exc:
            logger.warning("payment_timeout", error=str(exc))
            raise PaymentFailed("gateway timeout") from exc
        except GatewayError as exc:
            logger.error("payment_gateway_error", error=str(exc))
            raise PaymentFailed(str(exc)) from exc

        if not result.success:
            logger.warning("payment_declined", reason=result.failure_reason)
            raise PaymentFailed(result.failure_reason or "declined")

        return {
            "method": payment_method,
            "status": PaymentStatus.PENDING.value if result.is_pending else PaymentStatus.COMPLETED.value,
            "transaction_id": result.transaction_id,
        }

    def _order_lines(self, cart, products, breakdown) -> list[dict]:
        lines = []
        for product_id, quantity in cart.quantities().items():
            product = products[product_id]
            priced = breakdown.line_for(product_id)
            lines.append(
                {
                    "product_id": product_id,
                    "title": product.title,
                    "quantity": quantity,
                    "unit_price": str(priced.unit_price),
                    "user_price": str(priced.user_price),
                    "line_total": str(priced.line_total),
                    "inventory_mode": product.inventory_mode,
                }
            )
        return lines

    def _allocate(self, lines, order_id, customer_id):
        """Claim codes for every limited line. Shortfalls are recorded, not raised."""
        for line in lines:
            if line["inventory_mode"] != "limited":
                continue
            try:
                line["codes"] = self.ledger.allocate(line["product_id"], order_id, line["quantity"], customer_id)
                line["code_delivered"] = True
            except InsufficientStock as exc:
                logger.warning("allocation_shortfall", product_id=line["product_id"], reason=exc.message)
                line["code_delivered"] = False
                line["code_error"] = exc.message

    def _commit(self, fields: dict, now) -> Order:
        """Persist the order and return it as stored.

        An attempt counts only once the order reads back with this checkout's
        id. A number that turns out to belong to another order is replaced
        and the attempt retried; the payment keeps its original reference.
        """
        repo = current_domain.repository_for(Order)
        last_error = None
        for attempt in range(1, config.ORDER_COMMIT_ATTEMPTS + 1):
            command = PlaceOrder(
                **{
                    **fields,
                    "items": json.dumps(fields["items"]),
                    "pricing": json.dumps(fields["pricing"]),
                    "payment": json.dumps(fields["payment"]),
                }
            )
            try:
                dispatch(command)
            except OrderNumberTaken as exc:
                last_error = exc
                fields["order_number"] = self._fresh_order_number(now)
                logger.warning("order_number_taken", attempt=attempt, replacement=fields["order_number"])
                continue
            except ValidationError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning("order_commit_retry", attempt=attempt, error=str(exc))
                continue

            order = repo.by_number(command.order_number)
            if order is not None and str(order.id) == command.order_id:
                return order
            last_error = OrderNotPersisted(command.order_number)
            logger.warning("order_commit_unconfirmed", attempt=attempt)

        logger.error("order_commit_failed", order_id=fields["order_id"], attempts=config.ORDER_COMMIT_ATTEMPTS)
        raise last_error

    def _abandon(self, order_id, cart, promotion, lines):
        """Hand back what a failed checkout took. Failures here are only logged."""
        for line in lines:
            if not line.get("codes"):
                continue
            try:
                self.ledger.release(order_id, line["product_id"])
            except Exception:
                logger.exception("code_release_failed", product_id=line["product_id"])

        if promotion is not None:
            try:
                self.coupons.release(promotion.code, order_id)
            except Exception:
                logger.exception("coupon_release_failed", code=promotion.code)

        if cart is not None:
            try:
                self.carts.release(cart, order_id)
            except Exception:
                logger.exception("cart_release_failed", cart_id=str(cart.id))

    def _complete_cart(self, cart, order_id):
        try:
            self.carts.complete_checkout(cart, order_id)
        except Exception:
            logger.exception("cart_cleanup_failed", cart_id=str(cart.id))

    def _notify(self, order, requester):
        try:
            self.notifier.order_confirmed(order, requester)
        except Exception:
            logger.exception("notification_failed")


    # -------------------------------------------------------------------
    # Payment webhook
    # -------------------------------------------------------------------
    def confirm_payment(self, order_number: str, transaction_id: str | None = None) -> Order | None:
        """Settle an order whose payment was pending at checkout.

        Unknown orders are logged and ignored; redelivered confirmations are
        no-ops. Codes for limited items are allocated once the order is
        confirmed.
        """
        repo = current_domain.repository_for(Order)
        if repo.by_number(order_number) is None:
            logger.warning("webhook_unknown_order", order_number=order_number)
            return None

        with order_locks.hold(order_key(order_number)):
            changed = dispatch(
                ConfirmOrderPayment(order_number=order_number, transaction_id=transaction_id),
            )

        order = repo.get_by_number(order_number)
        if not changed:
            return order

        logger.info("payment_confirmed", order_number=order_number, status=order.status)
        if order.status != OrderStatus.CONFIRMED.value:
            return order

        for item in order.items:
            if not item.is_limited or item.code_delivered:
                continue
            try:
                codes = self.ledger.allocate(item.product_id, order.id, item.quantity, order.customer_id)
                command = RecordOrderCodes(
                    order_number=order_number,
                    product_id=str(item.product_id),
                    codes=json.dumps(codes),
                )
            except InsufficientStock as exc:
                logger.warning("allocation_shortfall", order_number=order_number, product_id=str(item.product_id))
                command = RecordOrderCodes(
                    order_number=order_number,
                    product_id=str(item.product_id),
                    failure_reason=exc.message,
                )
            dispatch(command)

        order = repo.get_by_number(order_number)
        self._notify(
            order,
            Requester(customer_id=order.customer_id, session_id=order.session_id, is_plus_member=order.is_plus_member),
        )
        return order

    def fail_payment(self, order_number: str, reason: str) -> Order | None:
        """Record a pending payment the gateway declined after checkout."""
        repo = current_domain.repository_for(Order)
        if repo.by_number(order_number) is None:
            logger.warning("webhook_unknown_order", order_number=order_number)
            return None

        with order_locks.hold(order_key(order_number)):
            dispatch(
                FailOrderPayment(order_number=order_number, reason=reason),
            )
        logger.info("payment_failed", order_number=order_number, reason=reason)
        return repo.get_by_number(order_number)

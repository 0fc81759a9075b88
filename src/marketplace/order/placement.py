"""Order placement — commands and handler.

Checkout records the outcome of a paid cart with ``PlaceOrder``. The
command is idempotent on (``order_id``, ``order_number``) so a retried commit
never produces a second order for one payment. An order number already held
by a different order is refused with ``OrderNumberTaken``.
"""

import json

from protean import handle
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import OrderNumberTaken
from marketplace.order.order import Order


@marketplace.command(part_of="Order")
class PlaceOrder:
    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    customer_id = Identifier()
    session_id = String(max_length=255)
    items = Text(required=True)  # JSON: list of priced items, with codes or code_error
    pricing = Text(required=True)  # JSON: subtotal, discount, tax, total, tax_rate, currency
    payment = Text(required=True)  # JSON: method, status, transaction_id
    coupon_code = String(max_length=50)
    is_plus_member = Boolean(default=False)


@marketplace.command(part_of="Order")
class RecordOrderCodes:
    """Attach codes allocated after placement, or flag the item when allocation failed."""

    order_number = String(required=True, max_length=50)
    product_id = Identifier(required=True)
    codes = Text()  # JSON array; empty when allocation failed
    failure_reason = String(max_length=500)


@marketplace.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        repo = current_domain.repository_for(Order)
        existing = repo.by_number(command.order_number)
        if existing is not None:
            if str(existing.id) != str(command.order_id):
                raise OrderNumberTaken(command.order_number)
            return command.order_number

        order = Order.place(
            order_id=command.order_id,
            order_number=command.order_number,
            customer_id=command.customer_id,
            session_id=command.session_id,
            items_data=json.loads(command.items),
            pricing=json.loads(command.pricing),
            payment=json.loads(command.payment),
            coupon_code=command.coupon_code,
            is_plus_member=command.is_plus_member,
        )
        repo.add(order)
        return order.order_number

    @handle(RecordOrderCodes)
    def record_order_codes(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)

        codes = json.loads(command.codes) if command.codes else []
        if command.failure_reason:
            order.flag_missing_codes(command.product_id, command.failure_reason)
        else:
            order.record_codes(command.product_id, codes)
        repo.add(order)

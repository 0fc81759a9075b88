"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A checkout produced a new order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    customer_id = Identifier()
    status = String(required=True, max_length=20)
    total = String(required=True, max_length=20)
    currency = String(required=True, max_length=3)
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderStatusChanged:
    """The order moved to a new status."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    previous_status = String(required=True, max_length=20)
    new_status = String(required=True, max_length=20)
    actor = String(required=True, max_length=50)
    note = String(max_length=1000)
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentConfirmed:
    """The gateway confirmed a payment that was pending at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    transaction_id = String(max_length=255)
    paid_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentFailed:
    """The gateway declined a payment that was pending at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    reason = String(max_length=500)


@marketplace.event(part_of="Order")
class OrderCodesDelivered:
    """Activation codes were attached to an order item."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    product_id = Identifier(required=True)
    count = Integer(required=True)


@marketplace.event(part_of="Order")
class OrderCodesMissing:
    """Codes for a paid item could not be allocated; an operator must step in."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    product_id = Identifier(required=True)
    reason = String(max_length=500)


@marketplace.event(part_of="Order")
class RefundRequested:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    amount = String(required=True, max_length=20)
    reason = String(max_length=1000)
    requested_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class RefundApproved:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    actor = String(required=True, max_length=50)


@marketplace.event(part_of="Order")
class RefundDenied:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    actor = String(required=True, max_length=50)
    note = String(max_length=1000)


@marketplace.event(part_of="Order")
class RefundCompleted:
    """Money went back to the customer and the payment is marked refunded."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    amount = String(required=True, max_length=20)
    refund_id = String(max_length=255)
    completed_at = DateTime(required=True)

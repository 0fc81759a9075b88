"""Order status — administrative transitions and cancellation."""

from protean import handle
from protean.fields import String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Actor, Order, OrderStatus


@marketplace.command(part_of="Order")
class UpdateOrderStatus:
    """Move an order along the state machine (admin operation)."""

    order_number = String(required=True, max_length=50)
    status = String(required=True, choices=OrderStatus)
    note = String(max_length=1000)
    actor = String(max_length=50, default=Actor.ADMIN.value)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_number = String(required=True, max_length=50)
    reason = String(max_length=1000)
    actor = String(max_length=50, default=Actor.CUSTOMER.value)


@marketplace.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)
        order.transition_to(command.status, note=command.note, actor=command.actor)
        repo.add(order)
        return order.status

    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)
        order.cancel(reason=command.reason, actor=command.actor)
        repo.add(order)
        return order.status

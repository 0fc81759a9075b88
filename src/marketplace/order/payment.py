"""Order payment — commands and handler for gateway confirmations.

Charges the gateway reports as pending at checkout are settled later through
the payment webhook, which lands here.
"""

from protean import handle
from protean.fields import String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.utils.locks import KeyedLocks

# Serializes money movements (webhook confirmation, refunds) per order
order_locks = KeyedLocks()


def order_key(order_number) -> str:
    return f"order:{order_number}"


@marketplace.command(part_of="Order")
class ConfirmOrderPayment:
    order_number = String(required=True, max_length=50)
    transaction_id = String(max_length=255)


@marketplace.command(part_of="Order")
class FailOrderPayment:
    order_number = String(required=True, max_length=50)
    reason = String(required=True, max_length=500)


@marketplace.command_handler(part_of=Order)
class OrderPaymentHandler:
    @handle(ConfirmOrderPayment)
    def confirm_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)
        changed = order.confirm_payment(command.transaction_id)
        if changed:
            repo.add(order)
        return changed

    @handle(FailOrderPayment)
    def fail_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)
        order.fail_payment(command.reason)
        repo.add(order)
        return order.status

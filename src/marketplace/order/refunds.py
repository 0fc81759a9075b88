"""Refund workflow — customer requests, admin decisions, money and codes back.

A refund is requested against a paid order and then resolved by an
administrator:

    requested → approved | denied | completed
    approved  → completed | denied

Completing a refund pays the money back through the gateway (mock payments
never touched it), marks the payment refunded and moves the order to
``refunded`` where the state machine allows. A refund of the full total also
revokes the order's activation codes and returns them to their pools; after
a partial refund the customer keeps the codes.
"""

import structlog
from protean import handle
from protean.fields import String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import PaymentFailed
from marketplace.gateway import GatewayError, get_gateway
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.order import MOCK_PAYMENT_METHOD, Actor, Order, RefundStatus
from marketplace.order.payment import order_key, order_locks
from marketplace.utils.dispatch import dispatch
from marketplace.utils.money import to_minor_units

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class RequestRefund:
    order_number = String(required=True, max_length=50)
    reason = String(required=True, max_length=1000)
    amount = String(max_length=20)  # Defaults to the order total
    actor = String(max_length=50, default=Actor.CUSTOMER.value)


@marketplace.command(part_of="Order")
class ResolveRefund:
    order_number = String(required=True, max_length=50)
    decision = String(required=True, choices=RefundStatus)
    actor = String(max_length=50, default=Actor.ADMIN.value)
    note = String(max_length=1000)
    refund_id = String(max_length=255)


@marketplace.command_handler(part_of=Order)
class RefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)
        order.request_refund(reason=command.reason, amount=command.amount, actor=command.actor)
        repo.add(order)
        return order.refund.status

    @handle(ResolveRefund)
    def resolve_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_by_number(command.order_number)

        order.assert_refund_decision(command.decision)
        decision = RefundStatus(command.decision)
        if decision == RefundStatus.APPROVED:
            order.approve_refund(actor=command.actor, note=command.note)
        elif decision == RefundStatus.DENIED:
            order.deny_refund(actor=command.actor, note=command.note)
        else:
            order.complete_refund(actor=command.actor, note=command.note, refund_id=command.refund_id)

        repo.add(order)
        return order.refund.status


class RefundWorkflow:
    def __init__(self, gateway=None, ledger: InventoryLedger | None = None) -> None:
        self._gateway = gateway
        self.ledger = ledger or InventoryLedger()

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    def request(self, order_number, reason, amount=None, actor=Actor.CUSTOMER.value) -> Order:
        with order_locks.hold(order_key(order_number)):
            dispatch(
                RequestRefund(
                    order_number=order_number,
                    reason=reason,
                    amount=str(amount) if amount is not None else None,
                    actor=actor,
                ),
            )
        logger.info("refund_requested", order_number=order_number, actor=actor)
        return current_domain.repository_for(Order).get_by_number(order_number)

    def resolve(self, order_number, decision, actor=Actor.ADMIN.value, note=None) -> Order:
        repo = current_domain.repository_for(Order)

        with order_locks.hold(order_key(order_number)):
            order = repo.get_by_number(order_number)
            order.assert_refund_decision(decision)

            refund_id = None
            if decision == RefundStatus.COMPLETED.value:
                refund_id = self._pay_back(order)

            dispatch(
                ResolveRefund(
                    order_number=order_number,
                    decision=decision,
                    actor=actor,
                    note=note,
                    refund_id=refund_id,
                ),
            )

        order = repo.get_by_number(order_number)
        if decision == RefundStatus.COMPLETED.value:
            for item in order.items:
                if item.is_limited and item.revoked_code_list:
                    self.ledger.release(order.id, item.product_id)

        logger.info("refund_resolved", order_number=order_number, decision=decision, actor=actor)
        return order

    def _pay_back(self, order) -> str | None:
        if order.payment.method == MOCK_PAYMENT_METHOD or not order.payment.transaction_id:
            return None

        try:
            result = self.gateway.refund(
                order.payment.transaction_id,
                to_minor_units(order.refund.amount),
                order.refund.reason or "requested_by_customer",
            )
        except GatewayError as exc:
            logger.error("refund_gateway_error", order_number=order.order_number, error=str(exc))
            raise PaymentFailed(f"refund could not be sent: {exc}") from exc

        if not result.success:
            logger.warning("refund_rejected", order_number=order.order_number, reason=result.failure_reason)
            raise PaymentFailed(result.failure_reason or "refund rejected")
        return result.refund_id

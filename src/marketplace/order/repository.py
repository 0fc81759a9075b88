"""Repository for the Order aggregate."""

from protean.exceptions import ObjectNotFoundError

from marketplace.domain import marketplace
from marketplace.order.order import Order, PaymentStatus


def _newest_first(orders):
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


@marketplace.repository(part_of=Order)
class OrderRepository:
    def by_number(self, order_number) -> Order | None:
        results = self._dao.query.filter(order_number=order_number).all().items
        return results[0] if results else None

    def get_by_number(self, order_number) -> Order:
        """Like ``by_number`` but raises ``ObjectNotFoundError`` for unknown orders."""
        order = self.by_number(order_number)
        if order is None:
            raise ObjectNotFoundError(f"Order {order_number} not found")
        return order

    def for_customer(self, customer_id) -> list[Order]:
        return _newest_first(self._dao.query.filter(customer_id=str(customer_id)).all().items)

    def all_orders(self, status=None) -> list[Order]:
        query = self._dao.query
        if status:
            query = query.filter(status=status)
        return _newest_first(query.all().items)

    def awaiting_codes(self) -> list[Order]:
        """Paid orders holding limited items whose codes were never delivered."""
        return [
            order
            for order in self.all_orders()
            if order.payment.status == PaymentStatus.COMPLETED.value and order.awaits_codes
        ]

"""Application tests for the PlaceOrder handler's idempotency."""

import json

import pytest
from marketplace.errors import OrderNumberTaken
from marketplace.order.order import Order
from marketplace.order.placement import PlaceOrder
from protean import current_domain

ITEMS = [
    {
        "product_id": "gift-025",
        "title": "Gift Card 25",
        "quantity": 1,
        "unit_price": "22.50",
        "user_price": "22.50",
        "line_total": "22.50",
        "inventory_mode": "unlimited",
    }
]


def _place(order_id, customer_id, order_number="ORD-20261019-00000001"):
    return current_domain.process(
        PlaceOrder(
            order_id=order_id,
            order_number=order_number,
            customer_id=customer_id,
            items=json.dumps(ITEMS),
            pricing=json.dumps({"subtotal": "22.50", "discount": "0.00", "tax": "4.50", "total": "27.00"}),
            payment=json.dumps({"method": "mock_payment", "status": "completed", "transaction_id": "mock_1"}),
        ),
        asynchronous=False,
    )


class TestPlacementIdempotency:
    def test_replay_with_same_order_id_places_once(self):
        _place("7c9e6679-7425-40de-944b-e07fc1f90ae7", "cust-001")
        _place("7c9e6679-7425-40de-944b-e07fc1f90ae7", "cust-001")

        orders = current_domain.repository_for(Order).all_orders()
        assert len(orders) == 1
        assert str(orders[0].id) == "7c9e6679-7425-40de-944b-e07fc1f90ae7"

    def test_number_held_by_another_order_is_refused(self):
        _place("7c9e6679-7425-40de-944b-e07fc1f90ae7", "cust-001")

        with pytest.raises(OrderNumberTaken) as exc:
            _place("0b8f3c3e-2a5d-4a47-9d9a-6f6b8d1e7c10", "cust-999")

        assert exc.value.order_number == "ORD-20261019-00000001"
        order = current_domain.repository_for(Order).get_by_number("ORD-20261019-00000001")
        assert order.customer_id == "cust-001"

"""Tests for the Order state machine — allowed transitions, terminal states and the timeline."""

import pytest
from marketplace.errors import InvalidStatusTransition
from marketplace.order.events import OrderPlaced, OrderStatusChanged
from marketplace.order.order import Actor, Order, OrderStatus, can_transition, generate_order_number

ALLOWED = {
    "pending": {"processing", "confirmed", "cancelled"},
    "processing": {"confirmed", "cancelled"},
    "confirmed": {"shipped", "delivered", "cancelled", "refunded"},
    "shipped": {"delivered", "refunded"},
    "delivered": {"refunded"},
    "cancelled": set(),
    "refunded": set(),
}

# Shortest admin path from pending to each state
_PATHS = {
    "pending": [],
    "processing": ["processing"],
    "confirmed": ["confirmed"],
    "shipped": ["confirmed", "shipped"],
    "delivered": ["confirmed", "delivered"],
    "cancelled": ["cancelled"],
    "refunded": ["confirmed", "refunded"],
}


def _place(payment_status="pending"):
    return Order.place(
        order_number=generate_order_number(),
        items_data=[
            {
                "product_id": "gift-025",
                "title": "Gift Card 25",
                "quantity": 1,
                "unit_price": "22.50",
                "user_price": "22.50",
                "line_total": "22.50",
                "inventory_mode": "unlimited",
            }
        ],
        pricing={"subtotal": "22.50", "discount": "0.00", "tax": "4.50", "total": "27.00"},
        payment={"method": "pm_card", "status": payment_status, "transaction_id": "txn-1"},
        customer_id="cust-001",
    )


def _order_at(status):
    order = _place()
    for step in _PATHS[status]:
        order.transition_to(step, actor=Actor.ADMIN.value)
    order._events.clear()
    return order


class TestPlacement:
    def test_unpaid_order_starts_pending(self):
        order = _place()

        assert order.status == OrderStatus.PENDING.value
        assert [e.status for e in order.sorted_timeline()] == ["pending"]
        assert isinstance(order._events[-1], OrderPlaced)

    def test_paid_order_starts_confirmed(self):
        order = _place(payment_status="completed")

        assert order.status == OrderStatus.CONFIRMED.value
        assert [e.status for e in order.sorted_timeline()] == ["pending", "confirmed"]
        assert order.payment.paid_at is not None

    def test_order_number_format(self):
        number = generate_order_number()
        assert number.startswith("ORD-")
        assert len(number.split("-")[2]) == 8


class TestTransitionClosure:
    @pytest.mark.parametrize("current", list(ALLOWED))
    @pytest.mark.parametrize("target", list(ALLOWED))
    def test_only_listed_transitions_succeed(self, current, target):
        order = _order_at(current)
        timeline_before = len(order.timeline)

        if target in ALLOWED[current]:
            order.transition_to(target, note="moved", actor=Actor.ADMIN.value)
            assert order.status == target
            assert len(order.timeline) == timeline_before + 1
            assert isinstance(order._events[-1], OrderStatusChanged)
        else:
            with pytest.raises(InvalidStatusTransition):
                order.transition_to(target, actor=Actor.ADMIN.value)
            assert order.status == current
            assert len(order.timeline) == timeline_before
            assert order._events == []

    @pytest.mark.parametrize("current", list(ALLOWED))
    def test_can_transition_matches_table(self, current):
        for target in ALLOWED:
            assert can_transition(current, target) == (target in ALLOWED[current])


class TestTimeline:
    def test_entries_record_actor_and_note(self):
        order = _order_at("confirmed")
        order.transition_to("shipped", note="Sent to customer", actor=Actor.ADMIN.value)

        last = order.sorted_timeline()[-1]
        assert last.status == "shipped"
        assert last.note == "Sent to customer"
        assert last.actor == "admin"
        assert last.timestamp is not None

    def test_entries_are_only_appended(self):
        order = _order_at("confirmed")
        before = [(e.sequence, e.status, e.note) for e in order.sorted_timeline()]

        order.transition_to("delivered", actor=Actor.ADMIN.value)

        after = [(e.sequence, e.status, e.note) for e in order.sorted_timeline()]
        assert after[: len(before)] == before
        assert [e.sequence for e in order.sorted_timeline()] == list(range(len(after)))


class TestCancellation:
    @pytest.mark.parametrize("status", ["pending", "processing", "confirmed"])
    def test_cancellable_states(self, status):
        order = _order_at(status)
        assert order.can_be_cancelled

        order.cancel(reason="Changed my mind")
        assert order.status == "cancelled"

    @pytest.mark.parametrize("status", ["shipped", "delivered", "cancelled", "refunded"])
    def test_not_cancellable(self, status):
        order = _order_at(status)
        assert not order.can_be_cancelled

        with pytest.raises(InvalidStatusTransition):
            order.cancel()


class TestPayment:
    def test_confirm_pending_payment(self):
        order = _place()
        changed = order.confirm_payment("txn-final")

        assert changed
        assert order.payment.status == "completed"
        assert order.payment.transaction_id == "txn-final"
        assert order.status == "confirmed"

    def test_confirm_twice_is_noop(self):
        order = _place()
        order.confirm_payment("txn-final")
        timeline_length = len(order.timeline)

        assert order.confirm_payment("txn-final") is False
        assert len(order.timeline) == timeline_length

    def test_failed_payment_cancels(self):
        order = _place()
        order.fail_payment("Card declined")

        assert order.payment.status == "failed"
        assert order.payment.failure_reason == "Card declined"
        assert order.status == "cancelled"

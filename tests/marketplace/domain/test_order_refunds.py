"""Tests for refund eligibility and the refund decision flow on the Order aggregate."""

from decimal import Decimal

import pytest
from marketplace.errors import RefundNotEligible
from marketplace.order.events import RefundCompleted, RefundRequested
from marketplace.order.order import Actor, Order, generate_order_number


def _order(payment_status="completed"):
    order = Order.place(
        order_number=generate_order_number(),
        items_data=[
            {
                "product_id": "game-001",
                "title": "Starfall Odyssey",
                "quantity": 2,
                "unit_price": "10.00",
                "user_price": "9.00",
                "line_total": "18.00",
                "inventory_mode": "limited",
                "codes": ["SFO-AAAA", "SFO-BBBB"],
            }
        ],
        pricing={"subtotal": "18.00", "discount": "0.00", "tax": "3.60", "total": "21.60"},
        payment={"method": "pm_card", "status": payment_status, "transaction_id": "txn-1"},
        customer_id="cust-plus",
        is_plus_member=True,
    )
    order._events.clear()
    return order


class TestEligibility:
    def test_paid_order_can_be_refunded(self):
        assert _order().can_be_refunded

    @pytest.mark.parametrize("payment_status", ["pending", "failed"])
    def test_unpaid_order_cannot_be_refunded(self, payment_status):
        order = _order(payment_status)
        assert not order.can_be_refunded
        with pytest.raises(RefundNotEligible):
            order.request_refund("Wrong game")

    def test_second_request_rejected(self):
        order = _order()
        order.request_refund("Wrong game")

        assert not order.can_be_refunded
        with pytest.raises(RefundNotEligible):
            order.request_refund("Still wrong")

    def test_refunded_order_rejects_new_request(self):
        order = _order()
        order.request_refund("Wrong game")
        order.complete_refund()

        with pytest.raises(RefundNotEligible):
            order.request_refund("Again")


class TestRequest:
    def test_defaults_to_full_total(self):
        order = _order()
        order.request_refund("Wrong game")

        assert order.refund.status == "requested"
        assert order.refund.amount == "21.60"
        assert order.refund.reason == "Wrong game"
        assert isinstance(order._events[-1], RefundRequested)

    def test_partial_amount(self):
        order = _order()
        order.request_refund("One code did not work", amount=Decimal("10.80"))
        assert order.refund.amount == "10.80"

    @pytest.mark.parametrize("amount", ["0", "-1", "21.61"])
    def test_amount_out_of_range(self, amount):
        order = _order()
        with pytest.raises(RefundNotEligible):
            order.request_refund("Bad amount", amount=amount)
        assert order.refund.status == "none"

    def test_request_does_not_move_status_or_money(self):
        order = _order()
        order.request_refund("Wrong game", actor=Actor.CUSTOMER.value)

        assert order.status == "confirmed"
        assert order.payment.status == "completed"
        last = order.sorted_timeline()[-1]
        assert last.note == "Refund requested: Wrong game"
        assert last.actor == "customer"


class TestDecision:
    def test_approve_then_complete(self):
        order = _order()
        order.request_refund("Wrong game")
        order.approve_refund()
        order.complete_refund(refund_id="ref-1")

        assert order.refund.status == "completed"
        assert order.refund.refund_id == "ref-1"
        assert order.payment.status == "refunded"
        assert order.status == "refunded"
        assert isinstance(order._events[-1], RefundCompleted)

    def test_deny(self):
        order = _order()
        order.request_refund("Wrong game")
        order.deny_refund(note="Codes already redeemed")

        assert order.refund.status == "denied"
        assert order.status == "confirmed"
        assert order.payment.status == "completed"

    def test_cannot_decide_without_request(self):
        order = _order()
        with pytest.raises(RefundNotEligible):
            order.approve_refund()

    def test_cannot_complete_denied_refund(self):
        order = _order()
        order.request_refund("Wrong game")
        order.deny_refund()

        with pytest.raises(RefundNotEligible):
            order.complete_refund()

    def test_complete_on_cancelled_order_only_notes_timeline(self):
        order = _order()
        order.request_refund("Wrong game")
        order.cancel(reason="Fraud check", actor=Actor.ADMIN.value)

        order.complete_refund(note="Refunded after cancellation")

        assert order.status == "cancelled"
        assert order.payment.status == "refunded"
        assert order.sorted_timeline()[-1].note == "Refunded after cancellation"


class TestCodeRevocation:
    def test_full_refund_revokes_codes(self):
        order = _order()
        order.request_refund("Wrong game")
        order.complete_refund()

        item = order.item_for("game-001")
        assert order.refund_is_full
        assert item.code_list == []
        assert item.revoked_code_list == ["SFO-AAAA", "SFO-BBBB"]
        assert any(entry.note == "2 activation code(s) revoked" for entry in order.sorted_timeline())

    def test_partial_refund_leaves_codes_with_customer(self):
        order = _order()
        order.request_refund("One copy was a duplicate", amount="10.80")
        order.complete_refund()

        item = order.item_for("game-001")
        assert not order.refund_is_full
        assert order.payment.status == "refunded"
        assert item.code_list == ["SFO-AAAA", "SFO-BBBB"]
        assert item.revoked_code_list == []

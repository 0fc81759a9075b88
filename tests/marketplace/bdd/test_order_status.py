"""BDD tests for order status transitions."""

from marketplace.errors import InvalidStatusTransition
from marketplace.order.order import Actor, Order, generate_order_number
from pytest_bdd import given, parsers, scenarios, then, when

scenarios("features/order_status.feature")

_PATHS = {
    "pending": [],
    "processing": ["processing"],
    "confirmed": ["confirmed"],
    "shipped": ["confirmed", "shipped"],
    "delivered": ["confirmed", "delivered"],
    "cancelled": ["cancelled"],
    "refunded": ["confirmed", "refunded"],
}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('an order in status "{current}"'))
def _(context, current):
    order = Order.place(
        order_number=generate_order_number(),
        items_data=[
            {
                "product_id": "dlc-007",
                "title": "Expansion Pack",
                "quantity": 1,
                "unit_price": "4.99",
                "user_price": "4.99",
                "line_total": "4.99",
            }
        ],
        pricing={"subtotal": "4.99", "discount": "0.00", "tax": "1.00", "total": "5.99"},
        payment={"method": "pm_card", "status": "pending"},
        customer_id="cust-001",
    )
    for step in _PATHS[current]:
        order.transition_to(step, actor=Actor.SYSTEM.value)
    context["order"] = order


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('an administrator moves the order to "{target}"'))
def _(context, target):
    context["timeline_length"] = len(context["order"].timeline)
    try:
        context["order"].transition_to(target, note="Manual update", actor=Actor.ADMIN.value)
    except InvalidStatusTransition as exc:
        context["error"] = exc


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the last timeline entry is "{status}" by "{actor}"'))
def _(context, status, actor):
    entry = context["order"].sorted_timeline()[-1]
    assert entry.status == status
    assert entry.actor == actor


@then("the transition is rejected")
def _(context):
    assert isinstance(context["error"], InvalidStatusTransition)
    assert len(context["order"].timeline) == context["timeline_length"]

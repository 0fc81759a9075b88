"""Shared BDD fixtures and step definitions for the Marketplace."""

import pytest
from marketplace.cart.store import CartStore
from marketplace.requester import Requester
from pytest_bdd import given, parsers, then


@pytest.fixture()
def context():
    """Container for the shopper, the placed order and any captured error."""
    return {"requester": None, "order": None, "error": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a limited product "{product_id}" priced {price} with a {pct:d}% plus discount'))
def _(catalog, product_id, price, pct):
    catalog.register(product_id, product_id.title(), base_price=price, plus_discount_pct=pct, inventory_mode="limited")


@given(parsers.cfparse('the product "{product_id}" has codes "{codes}"'))
def _(ledger, product_id, codes):
    ledger.stock(product_id, mode="limited", codes=[c.strip() for c in codes.split(",")])


@given(parsers.cfparse('the products "{product_ids}" are on sale'))
def _(catalog, product_ids):
    for product_id in product_ids.split(","):
        catalog.register(product_id.strip(), product_id.strip().upper(), base_price="5.00")


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order is "{status}"'))
def _(context, status):
    assert context["order"].status == status


@then(parsers.cfparse('the customer "{customer_id}" holds {quantity:d} of "{product_id}"'))
def _(customer_id, quantity, product_id):
    cart = CartStore().get(Requester(customer_id=customer_id))
    assert cart.quantities()[product_id] == quantity

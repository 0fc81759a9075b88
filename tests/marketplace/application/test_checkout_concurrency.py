"""Application tests for checkouts running side by side — each in its own domain context, as requests are."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest
from marketplace.cart.store import CartStore
from marketplace.checkout.service import CheckoutService
from marketplace.domain import marketplace
from marketplace.errors import CheckoutInProgress, InvalidPromotion
from marketplace.gateway import FakeGateway, set_gateway
from marketplace.order.order import Order
from marketplace.promotion.coupons import CouponBook
from marketplace.promotion.redemption import CreatePromotion
from marketplace.requester import Requester
from protean import current_domain

WAIT = 10


class _GatedGateway(FakeGateway):
    """Holds every settlement until the test lets it through."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def settle(self, *args, **kwargs):
        self.entered.set()
        assert self.release.wait(WAIT), "settlement was never released"
        return super().settle(*args, **kwargs)


class _BarrierGateway(FakeGateway):
    """Makes ``parties`` settlements wait for each other before answering."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self.barrier = threading.Barrier(parties)

    def settle(self, *args, **kwargs):
        self.barrier.wait(WAIT)
        return super().settle(*args, **kwargs)


def _orders():
    return current_domain.repository_for(Order).all_orders()


def _checkout_in_thread(requester, payment_method="pm_card_visa", coupon_code=None, barrier=None):
    with marketplace.domain_context():
        if barrier is not None:
            barrier.wait(WAIT)
        try:
            return CheckoutService().place_order(requester, payment_method, coupon_code=coupon_code)
        except (CheckoutInProgress, InvalidPromotion) as exc:
            return exc


def _add_in_thread(requester, product_id, barrier):
    with marketplace.domain_context():
        barrier.wait(WAIT)
        return CartStore().add_item(requester, product_id, 1)


@pytest.fixture
def carts():
    return CartStore()


class TestConcurrentCheckoutOfOneCart:
    def test_concurrent_second_tab_is_refused_and_charged_once(self, carts, customer, gift_card):
        gateway = _GatedGateway()
        set_gateway(gateway)
        carts.add_item(customer, gift_card, 2)

        with ThreadPoolExecutor(max_workers=1) as executor:
            first = executor.submit(_checkout_in_thread, customer)
            assert gateway.entered.wait(WAIT)

            with pytest.raises(CheckoutInProgress):
                CheckoutService().place_order(customer, "pm_card_visa")

            gateway.release.set()
            order = first.result(WAIT)

        assert order.status == "confirmed"
        assert len(gateway.calls) == 1
        assert len(_orders()) == 1
        assert carts.get(customer) is None

    def test_concurrent_add_during_payment_is_kept(self, carts, catalog, customer, gift_card):
        catalog.register("dlc-001", "Starfall Expansion", base_price="5.00")
        gateway = _GatedGateway()
        set_gateway(gateway)
        carts.add_item(customer, gift_card, 1)

        with ThreadPoolExecutor(max_workers=1) as executor:
            checkout = executor.submit(_checkout_in_thread, customer)
            assert gateway.entered.wait(WAIT)

            carts.add_item(customer, "dlc-001", 1)
            carts.add_item(customer, gift_card, 1)

            gateway.release.set()
            order = checkout.result(WAIT)

        assert order.item_for(gift_card).quantity == 1
        assert order.item_for("dlc-001") is None
        remaining = carts.get(customer)
        assert remaining.quantities() == {gift_card: 1, "dlc-001": 1}
        assert remaining.checkout_token is None


class TestConcurrentCheckoutsOfDifferentCustomers:
    def test_concurrent_checkouts_both_persist(self, carts, catalog, ledger):
        catalog.register("game-002", "Nebula Drift", base_price="15.00", inventory_mode="limited")
        ledger.stock("game-002", mode="limited", codes=["NEB-1", "NEB-2"])
        set_gateway(_BarrierGateway(2))
        alice, bob = Requester(customer_id="alice"), Requester(customer_id="bob")
        carts.add_item(alice, "game-002")
        carts.add_item(bob, "game-002")

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(_checkout_in_thread, r) for r in (alice, bob)]
            orders = [f.result(WAIT) for f in futures]

        repo = current_domain.repository_for(Order)
        for order in orders:
            assert order.status == "confirmed"
            assert repo.get_by_number(order.order_number).id == order.id
        assert sorted(code for o in orders for code in o.item_for("game-002").code_list) == ["NEB-1", "NEB-2"]
        assert ledger.available("game-002") == 0
        assert carts.get(alice) is None
        assert carts.get(bob) is None

    def test_concurrent_checkouts_mixed_with_cart_writes(self, carts, catalog, ledger, gift_card):
        buyers = [Requester(customer_id=f"buyer-{n}") for n in range(4)]
        browsers = [Requester(customer_id=f"browser-{n}") for n in range(4)]
        catalog.register("game-003", "Orbit Racer", base_price="12.00", inventory_mode="limited")
        codes = [f"ORB-{n}" for n in range(len(buyers))]
        ledger.stock("game-003", mode="limited", codes=codes)
        for buyer in buyers:
            carts.add_item(buyer, "game-003")
        barrier = threading.Barrier(len(buyers) + len(browsers))

        with ThreadPoolExecutor(max_workers=len(buyers) + len(browsers)) as executor:
            checkouts = [executor.submit(_checkout_in_thread, b, "pm_card_visa", None, barrier) for b in buyers]
            adds = [executor.submit(_add_in_thread, b, gift_card, barrier) for b in browsers]
            orders = [f.result(WAIT) for f in checkouts]
            for f in adds:
                f.result(WAIT)

        assert len(_orders()) == len(buyers)
        assert sorted(code for o in orders for code in o.item_for("game-003").code_list) == sorted(codes)
        assert ledger.available("game-003") == 0
        for browser in browsers:
            assert carts.get(browser).quantities() == {gift_card: 1}
        for buyer in buyers:
            assert carts.get(buyer) is None


class TestConcurrentCouponUse:
    def test_concurrent_checkouts_race_for_last_coupon_use(self, carts, gift_card, gateway):
        now = datetime.now(UTC)
        current_domain.process(
            CreatePromotion(
                code="LASTONE",
                discount_type="percentage",
                value="50",
                usage_limit=1,
                starts_at=now - timedelta(days=1),
                ends_at=now + timedelta(days=1),
            ),
            asynchronous=False,
        )
        shoppers = [Requester(customer_id=f"shopper-{n}") for n in range(4)]
        for shopper in shoppers:
            carts.add_item(shopper, gift_card)
        barrier = threading.Barrier(len(shoppers))

        with ThreadPoolExecutor(max_workers=len(shoppers)) as executor:
            futures = [executor.submit(_checkout_in_thread, s, "pm_card_visa", "LASTONE", barrier) for s in shoppers]
            results = [f.result(WAIT) for f in futures]

        placed = [r for r in results if isinstance(r, Order)]
        refused = [r for r in results if isinstance(r, InvalidPromotion)]
        assert len(placed) == 1
        assert len(refused) == len(shoppers) - 1
        assert placed[0].coupon_code == "LASTONE"

        promotion = CouponBook().find("LASTONE")
        assert promotion.times_used == 1
        assert str(promotion.usage_history[0].order_id) == str(placed[0].id)
        assert len(gateway.calls) == 1
        # Refused shoppers keep their carts and can check out without the coupon
        for shopper in shoppers:
            if str(shopper.customer_id) != str(placed[0].customer_id):
                assert carts.get(shopper).checkout_token is None

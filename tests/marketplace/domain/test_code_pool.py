"""Tests for the CodePool aggregate — stocking, claiming and releasing codes."""

import pytest
from marketplace.errors import InsufficientStock
from marketplace.inventory.events import CodesAllocated, CodesReleased, CodesStocked
from marketplace.inventory.pool import CodePool, InventoryMode
from protean.exceptions import ValidationError


def _pool(codes=("A-1", "A-2", "A-3")):
    pool = CodePool.open("game-001")
    if codes:
        pool.stock_codes(list(codes))
    pool._events.clear()
    return pool


class TestStocking:
    def test_stock_codes_updates_quantity(self):
        pool = CodePool.open("game-001")
        pool.stock_codes(["A-1", "A-2"])

        assert pool.quantity == 2
        assert pool.available == 2
        assert isinstance(pool._events[-1], CodesStocked)

    def test_top_up_continues_sequence(self):
        pool = _pool(["A-1"])
        pool.stock_codes(["A-2"])

        assert sorted(c.sequence for c in pool.codes) == [0, 1]

    def test_duplicate_code_rejected(self):
        pool = _pool(["A-1"])
        with pytest.raises(ValidationError):
            pool.stock_codes(["A-1"])
        assert pool.quantity == 1

    def test_duplicate_within_batch_rejected(self):
        pool = CodePool.open("game-001")
        with pytest.raises(ValidationError):
            pool.stock_codes(["A-1", "A-1"])

    def test_unlimited_pool_cannot_be_stocked(self):
        pool = CodePool.open("gift-025", mode=InventoryMode.UNLIMITED.value)
        with pytest.raises(ValidationError):
            pool.stock_codes(["G-1"])
        assert pool.available is None


class TestClaim:
    def test_claims_oldest_codes_first(self):
        pool = _pool()
        issued = pool.claim("order-1", 2, customer_id="cust-001")

        assert issued == ["A-1", "A-2"]
        assert pool.quantity == 1
        event = pool._events[-1]
        assert isinstance(event, CodesAllocated)
        assert event.remaining == 1

    def test_claimed_codes_are_attributed(self):
        pool = _pool()
        pool.claim("order-1", 1, customer_id="cust-001")

        used = [c for c in pool.codes if c.is_used]
        assert len(used) == 1
        assert str(used[0].used_by_order) == "order-1"
        assert str(used[0].used_by_customer) == "cust-001"
        assert used[0].used_at is not None

    def test_claim_is_idempotent_per_order(self):
        pool = _pool()
        first = pool.claim("order-1", 2)
        second = pool.claim("order-1", 2)

        assert first == second
        assert pool.quantity == 1

    def test_no_code_is_issued_twice(self):
        pool = _pool()
        a = pool.claim("order-1", 1)
        b = pool.claim("order-2", 1)
        c = pool.claim("order-3", 1)

        assert len(set(a + b + c)) == 3

    def test_claim_beyond_pool_raises(self):
        pool = _pool()
        pool.claim("order-1", 2)

        with pytest.raises(InsufficientStock) as exc:
            pool.claim("order-2", 2)

        assert exc.value.available == 1
        assert pool.quantity == 1

    def test_unlimited_pool_returns_no_codes(self):
        pool = CodePool.open("gift-025", mode=InventoryMode.UNLIMITED.value)
        assert pool.claim("order-1", 5) == []


class TestRelease:
    def test_release_returns_codes(self):
        pool = _pool()
        pool.claim("order-1", 2)

        released = pool.release("order-1")

        assert released == ["A-1", "A-2"]
        assert pool.quantity == 3
        assert isinstance(pool._events[-1], CodesReleased)

    def test_release_only_touches_own_codes(self):
        pool = _pool()
        pool.claim("order-1", 1)
        pool.claim("order-2", 1)

        pool.release("order-1")

        assert pool.codes_for_order("order-2") == ["A-2"]
        assert pool.quantity == 2

    def test_release_twice_is_noop(self):
        pool = _pool()
        pool.claim("order-1", 1)
        pool.release("order-1")
        pool._events.clear()

        assert pool.release("order-1") == []
        assert pool.quantity == 3
        assert pool._events == []

    def test_released_codes_can_be_claimed_again(self):
        pool = _pool(["A-1"])
        pool.claim("order-1", 1)
        pool.release("order-1")

        assert pool.claim("order-2", 1) == ["A-1"]

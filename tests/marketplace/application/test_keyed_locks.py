"""Tests for the keyed lock registry — ordering, re-entry and forgetting unused keys."""

import threading
from concurrent.futures import ThreadPoolExecutor

from marketplace.utils.locks import KeyedLocks


class TestRegistry:
    def test_key_is_forgotten_once_released(self):
        locks = KeyedLocks()

        with locks.hold("cart:1", "cart:2"):
            assert len(locks) == 2

        assert len(locks) == 0

    def test_reentrant_hold_keeps_key_until_outermost_release(self):
        locks = KeyedLocks()

        with locks.hold("promotion:WELCOME10"):
            with locks.hold("promotion:WELCOME10"):
                assert len(locks) == 1
            assert len(locks) == 1

        assert len(locks) == 0

    def test_key_is_forgotten_when_block_raises(self):
        locks = KeyedLocks()

        try:
            with locks.hold("pool:game-001"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert len(locks) == 0

    def test_duplicate_keys_are_taken_once(self):
        locks = KeyedLocks()

        with locks.hold("cart:1", "cart:1"):
            assert len(locks) == 1


class TestConcurrentHolders:
    def test_concurrent_holders_are_serialized(self):
        locks = KeyedLocks()
        inside = []
        overlaps = []
        barrier = threading.Barrier(8)

        def work():
            barrier.wait()
            for _ in range(50):
                with locks.hold("pool:game-001"):
                    inside.append(1)
                    if len(inside) > 1:
                        overlaps.append(len(inside))
                    inside.pop()

        with ThreadPoolExecutor(max_workers=8) as executor:
            for future in [executor.submit(work) for _ in range(8)]:
                future.result()

        assert overlaps == []
        assert len(locks) == 0

    def test_concurrent_opposite_key_order_does_not_deadlock(self):
        locks = KeyedLocks()
        barrier = threading.Barrier(2)

        def work(keys):
            barrier.wait()
            for _ in range(100):
                with locks.hold(*keys):
                    pass
            return True

        with ThreadPoolExecutor(max_workers=2) as executor:
            first = executor.submit(work, ("session:s1", "customer:c1"))
            second = executor.submit(work, ("customer:c1", "session:s1"))

            assert first.result(timeout=10)
            assert second.result(timeout=10)
        assert len(locks) == 0

    def test_many_distinct_keys_leave_nothing_behind(self):
        locks = KeyedLocks()

        def work(n):
            with locks.hold(f"cart:{n}"):
                return n

        with ThreadPoolExecutor(max_workers=8) as executor:
            assert sorted(executor.map(work, range(200))) == list(range(200))

        assert len(locks) == 0

"""Inventory ledger — the only way code pools are mutated.

Each product has its own claim lock. The lock is held around the whole
command, load through commit, so selecting unused codes and marking them
used is a single step as far as any other claim on the same product can see.
Claims on different products never wait for each other.
"""

import json

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.inventory.allocation import AllocateCodes, ReleaseCodes, StockCodes
from marketplace.inventory.pool import CodePool, InventoryMode
from marketplace.utils.dispatch import dispatch
from marketplace.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

pool_locks = KeyedLocks()


def pool_key(product_id) -> str:
    return f"pool:{product_id}"


class InventoryLedger:
    def __init__(self, locks: KeyedLocks | None = None) -> None:
        self.locks = locks or pool_locks

    def stock(self, product_id, mode=InventoryMode.LIMITED.value, codes=()) -> int | None:
        """Create or top up a product's pool. Returns the new available count."""
        with self.locks.hold(pool_key(product_id)):
            available = dispatch(
                StockCodes(product_id=str(product_id), mode=mode, codes=json.dumps(list(codes))),
            )
        logger.info("codes_stocked", product_id=str(product_id), mode=mode, added=len(codes))
        return available

    def allocate(self, product_id, order_id, count, customer_id=None) -> list[str]:
        """Claim exactly ``count`` codes for ``order_id``.

        Returns an empty list for unlimited and preorder products. Raises
        ``InsufficientStock`` when a limited pool cannot cover the request or
        the product has no pool at all.
        """
        with self.locks.hold(pool_key(product_id)):
            issued = dispatch(
                AllocateCodes(
                    product_id=str(product_id),
                    order_id=str(order_id),
                    count=count,
                    customer_id=str(customer_id) if customer_id else None,
                ),
            )
        if issued:
            logger.info("codes_allocated", product_id=str(product_id), order_id=str(order_id), count=len(issued))
        return issued

    def release(self, order_id, product_id) -> list[str]:
        """Return an order's codes to the pool. Safe to call more than once."""
        with self.locks.hold(pool_key(product_id)):
            released = dispatch(
                ReleaseCodes(product_id=str(product_id), order_id=str(order_id)),
            )
        if released:
            logger.info("codes_released", product_id=str(product_id), order_id=str(order_id), count=len(released))
        return released

    def available(self, product_id) -> int | None:
        """Unused codes left, or ``None`` for unlimited, preorder and unknown products."""
        try:
            pool = current_domain.repository_for(CodePool).get(str(product_id))
        except ObjectNotFoundError:
            return None
        return pool.available

    def issued_codes(self, product_id, order_id) -> list[str]:
        try:
            pool = current_domain.repository_for(CodePool).get(str(product_id))
        except ObjectNotFoundError:
            return []
        return pool.codes_for_order(order_id)

"""Code allocation — commands and handler.

Handles stocking a product's pool, claiming codes for an order and releasing
them again. Callers hold the product's claim lock around ``process`` so the
unit of work commits before the next claim on the same pool reads it; see
``InventoryLedger``.
"""

import json

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import InsufficientStock
from marketplace.inventory.pool import CodePool, InventoryMode


@marketplace.command(part_of="CodePool")
class StockCodes:
    """Create a product's pool if needed and load codes into it."""

    product_id = Identifier(required=True)
    mode = String(choices=InventoryMode, default=InventoryMode.LIMITED.value)
    codes = Text()  # JSON array of code strings


@marketplace.command(part_of="CodePool")
class AllocateCodes:
    """Issue ``count`` codes of a product to an order."""

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    count = Integer(required=True, min_value=1)
    customer_id = Identifier()


@marketplace.command(part_of="CodePool")
class ReleaseCodes:
    """Return the codes an order holds back to the product's pool."""

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)


def _load_pool(repo, product_id):
    try:
        return repo.get(product_id)
    except ObjectNotFoundError:
        return None


@marketplace.command_handler(part_of=CodePool)
class CodeAllocationHandler:
    @handle(StockCodes)
    def stock_codes(self, command):
        repo = current_domain.repository_for(CodePool)
        codes = json.loads(command.codes) if command.codes else []

        pool = _load_pool(repo, command.product_id)
        if pool is None:
            pool = CodePool.open(command.product_id, mode=command.mode)
        elif pool.mode != command.mode:
            pool.mode = command.mode

        if codes:
            pool.stock_codes(codes)
        repo.add(pool)
        return pool.available

    @handle(AllocateCodes)
    def allocate_codes(self, command):
        repo = current_domain.repository_for(CodePool)
        pool = _load_pool(repo, command.product_id)
        if pool is None:
            raise InsufficientStock(str(command.product_id), command.count, 0)

        issued = pool.claim(command.order_id, command.count, customer_id=command.customer_id)
        if issued:
            repo.add(pool)
        return issued

    @handle(ReleaseCodes)
    def release_codes(self, command):
        repo = current_domain.repository_for(CodePool)
        pool = _load_pool(repo, command.product_id)
        if pool is None:
            return []

        released = pool.release(command.order_id)
        if released:
            repo.add(pool)
        return released

"""In-process catalog used in development and tests.

Limited products take their available quantity from the inventory ledger
when one is attached, so the catalog never disagrees with the code pools.
"""

from dataclasses import replace
from decimal import Decimal

from marketplace.catalogue.port import Catalog, ProductSnapshot
from marketplace.utils.money import ZERO, to_money


class InMemoryCatalog(Catalog):
    def __init__(self, ledger=None) -> None:
        self.ledger = ledger
        self._products: dict[str, ProductSnapshot] = {}

    def register(
        self,
        product_id,
        title,
        base_price,
        sale_price=None,
        plus_discount_pct=0,
        inventory_mode="unlimited",
        status="active",
        currency="EUR",
        available_quantity=None,
    ) -> ProductSnapshot:
        product = ProductSnapshot(
            product_id=str(product_id),
            title=title,
            base_price=to_money(base_price),
            sale_price=to_money(sale_price) if sale_price is not None else None,
            plus_discount_pct=Decimal(str(plus_discount_pct)) if plus_discount_pct else ZERO,
            inventory_mode=inventory_mode,
            status=status,
            currency=currency,
            available_quantity=available_quantity,
        )
        self._products[product.product_id] = product
        return product

    def update(self, product_id, **changes) -> ProductSnapshot:
        product = replace(self._products[str(product_id)], **changes)
        self._products[product.product_id] = product
        return product

    def snapshot(self, product_ids) -> dict[str, ProductSnapshot]:
        found = {}
        for product_id in product_ids:
            product = self._products.get(str(product_id))
            if product is None:
                continue
            if product.is_limited and self.ledger is not None:
                product = replace(product, available_quantity=self.ledger.available(product.product_id) or 0)
            found[product.product_id] = product
        return found

    def clear(self) -> None:
        self._products.clear()

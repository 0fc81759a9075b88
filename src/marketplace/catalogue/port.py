"""Catalog port — the read-only product data checkout needs.

Search, browsing and product management live in the catalogue service. The
fulfillment core only asks for a snapshot of the products in a cart at the
moment of checkout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from marketplace.utils.money import ZERO


class ProductStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


@dataclass(frozen=True)
class ProductSnapshot:
    """A product as it was priced and stocked at one instant."""

    product_id: str
    title: str
    base_price: Decimal
    status: str = ProductStatus.ACTIVE.value
    sale_price: Decimal | None = None
    plus_discount_pct: Decimal = ZERO
    inventory_mode: str = "unlimited"
    available_quantity: int | None = None
    currency: str = "EUR"

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value

    @property
    def is_limited(self) -> bool:
        return self.inventory_mode == "limited"


class Catalog(ABC):
    @abstractmethod
    def snapshot(self, product_ids) -> dict[str, ProductSnapshot]:
        """Snapshots of the requested products. Unknown ids are left out."""
        ...

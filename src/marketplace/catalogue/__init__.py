"""Catalog factory.

Provides get_catalog() / set_catalog() so the API and tests share one
catalog instance.
"""

from marketplace.catalogue.memory import InMemoryCatalog
from marketplace.catalogue.port import Catalog, ProductSnapshot, ProductStatus
from marketplace.inventory.ledger import InventoryLedger

__all__ = [
    "Catalog",
    "InMemoryCatalog",
    "ProductSnapshot",
    "ProductStatus",
    "get_catalog",
    "reset_catalog",
    "set_catalog",
]

_current_catalog: Catalog | None = None


def get_catalog() -> Catalog:
    """Return the current catalog. Defaults to an InMemoryCatalog backed by the inventory ledger."""
    global _current_catalog
    if _current_catalog is None:
        _current_catalog = InMemoryCatalog(ledger=InventoryLedger())
    return _current_catalog


def set_catalog(catalog: Catalog) -> None:
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    global _current_catalog
    _current_catalog = None

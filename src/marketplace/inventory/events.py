"""Domain events for the CodePool aggregate."""

from protean.fields import Identifier, Integer

from marketplace.domain import marketplace


@marketplace.event(part_of="CodePool")
class CodesStocked:
    """New activation codes were loaded into a product's pool."""

    __version__ = 1

    product_id = Identifier(required=True)
    added = Integer(required=True)
    available = Integer(required=True)


@marketplace.event(part_of="CodePool")
class CodesAllocated:
    """Activation codes were issued to an order."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    count = Integer(required=True)
    remaining = Integer(required=True)


@marketplace.event(part_of="CodePool")
class CodesReleased:
    """Codes issued to an order went back into the pool."""

    __version__ = 1

    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    count = Integer(required=True)
    available = Integer(required=True)

"""Cart store — serialized access to carts by owner.

Each cart owner (customer or guest session) has its own lock, held around
the whole command so that two requests touching the same cart commit one
after the other. Merging holds the locks of both carts, taken in sorted
order. A checkout claims the cart under the same lock.
"""

import json
from datetime import UTC, datetime

import structlog
from protean.utils.globals import current_domain

from marketplace.cart.cart import ShoppingCart
from marketplace.cart.management import (
    AddToCart,
    ClaimCart,
    ClearCart,
    CompleteCartCheckout,
    MergeCarts,
    PurgeExpiredCarts,
    ReleaseCartClaim,
    RemoveFromCart,
    UpdateCartQuantity,
)
from marketplace.catalogue import get_catalog
from marketplace.errors import ProductUnavailable
from marketplace.utils.dispatch import dispatch
from marketplace.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

cart_locks = KeyedLocks()


def _owner_args(requester) -> dict:
    if requester.customer_id:
        return {"customer_id": str(requester.customer_id)}
    return {"session_id": requester.session_id}


class CartStore:
    def __init__(self, catalog=None, locks: KeyedLocks | None = None) -> None:
        self._catalog = catalog
        self.locks = locks or cart_locks

    @property
    def catalog(self):
        if self._catalog is None:
            return get_catalog()
        return self._catalog

    def get(self, requester) -> ShoppingCart | None:
        """The requester's live cart, or ``None`` when absent or expired."""
        cart = current_domain.repository_for(ShoppingCart).for_owner(**_owner_args(requester))
        if cart is None or cart.is_expired():
            return None
        return cart

    def _check_product(self, product_id):
        product = self.catalog.snapshot([product_id]).get(str(product_id))
        if product is None:
            raise ProductUnavailable(str(product_id), "does not exist")
        if not product.is_active:
            raise ProductUnavailable(str(product_id))

    def add_item(self, requester, product_id, quantity=1) -> ShoppingCart:
        self._check_product(product_id)
        with self.locks.hold(requester.owner_key):
            dispatch(
                AddToCart(product_id=str(product_id), quantity=quantity, **_owner_args(requester)),
            )
        return self.get(requester)

    def update_quantity(self, requester, product_id, quantity) -> ShoppingCart | None:
        with self.locks.hold(requester.owner_key):
            dispatch(
                UpdateCartQuantity(product_id=str(product_id), quantity=quantity, **_owner_args(requester)),
            )
        return self.get(requester)

    def remove_item(self, requester, product_id) -> ShoppingCart | None:
        with self.locks.hold(requester.owner_key):
            dispatch(
                RemoveFromCart(product_id=str(product_id), **_owner_args(requester)),
            )
        return self.get(requester)

    def clear(self, requester) -> None:
        with self.locks.hold(requester.owner_key):
            dispatch(ClearCart(**_owner_args(requester)))

    def claim(self, requester, token) -> ShoppingCart:
        """Hold the requester's cart for the checkout ``token`` and return it.

        Raises ``EmptyCart`` when there is nothing to buy and
        ``CheckoutInProgress`` while another checkout holds the cart. The
        cart is read back under the owner lock, so its items and revision
        are exactly what was claimed.
        """
        with self.locks.hold(requester.owner_key):
            dispatch(ClaimCart(token=token, **_owner_args(requester)))
            return self.get(requester)

    def release(self, cart, token) -> None:
        """Give the cart back after a checkout that did not go through."""
        with self.locks.hold(cart.owner_key):
            dispatch(ReleaseCartClaim(cart_id=str(cart.id), token=token))

    def complete_checkout(self, cart, token) -> None:
        """Remove a checked-out cart. Items added while the checkout ran are kept."""
        with self.locks.hold(cart.owner_key):
            remaining = dispatch(
                CompleteCartCheckout(
                    cart_id=str(cart.id),
                    token=token,
                    revision=cart.revision or 0,
                    purchased=json.dumps(cart.quantities()),
                ),
            )
        if remaining:
            logger.info("cart_kept_after_checkout", cart_id=str(cart.id), products=remaining)

    def merge(self, session_id, customer_id) -> int:
        """Fold the guest cart of ``session_id`` into the cart of ``customer_id``.

        Runs as one unit of work: the customer cart write and the session cart
        delete commit together. A missing or empty session cart is a no-op.
        Returns the number of products merged.
        """
        with self.locks.hold(f"session:{session_id}", f"customer:{customer_id}"):
            merged = dispatch(
                MergeCarts(session_id=session_id, customer_id=str(customer_id)),
            )
        if merged:
            logger.info("carts_merged", session_id=session_id, customer_id=str(customer_id), products=merged)
        return merged

    def purge_expired(self, now=None) -> int:
        purged = dispatch(
            PurgeExpiredCarts(as_of=now or datetime.now(UTC)),
        )
        if purged:
            logger.info("expired_carts_purged", count=purged)
        return purged

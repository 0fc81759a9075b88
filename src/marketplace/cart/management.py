"""Cart management — commands, handler and repository.

Every command addresses a cart by its owner (``customer_id`` or
``session_id``). A missing or expired cart is created on the first add and
is otherwise treated as absent.

A guest cart held by a checkout is not merged; it belongs to that checkout
until the checkout completes or its claim goes stale.
"""

import json
from datetime import UTC, datetime

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from marketplace.cart.cart import ShoppingCart
from marketplace.domain import marketplace
from marketplace.errors import EmptyCart


@marketplace.command(part_of="ShoppingCart")
class AddToCart:
    customer_id = Identifier()
    session_id = String(max_length=255)
    product_id = Identifier(required=True)
    quantity = Integer(default=1, min_value=1)


@marketplace.command(part_of="ShoppingCart")
class UpdateCartQuantity:
    customer_id = Identifier()
    session_id = String(max_length=255)
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=0)


@marketplace.command(part_of="ShoppingCart")
class RemoveFromCart:
    customer_id = Identifier()
    session_id = String(max_length=255)
    product_id = Identifier(required=True)


@marketplace.command(part_of="ShoppingCart")
class ClearCart:
    customer_id = Identifier()
    session_id = String(max_length=255)


@marketplace.command(part_of="ShoppingCart")
class MergeCarts:
    """Fold a guest session's cart into a customer's cart at login."""

    session_id = String(required=True, max_length=255)
    customer_id = Identifier(required=True)


@marketplace.command(part_of="ShoppingCart")
class ClaimCart:
    """Hold the owner's cart for one checkout, identified by ``token``."""

    customer_id = Identifier()
    session_id = String(max_length=255)
    token = String(required=True, max_length=50)


@marketplace.command(part_of="ShoppingCart")
class ReleaseCartClaim:
    """Hand a claimed cart back after a checkout that did not go through."""

    cart_id = Identifier(required=True)
    token = String(required=True, max_length=50)


@marketplace.command(part_of="ShoppingCart")
class CompleteCartCheckout:
    """Delete a checked-out cart, or only what was bought if it changed meanwhile."""

    cart_id = Identifier(required=True)
    token = String(required=True, max_length=50)
    revision = Integer(required=True, min_value=0)  # Cart revision the checkout priced
    purchased = Text(required=True)  # JSON: {product_id: quantity}


@marketplace.command(part_of="ShoppingCart")
class PurgeExpiredCarts:
    """Delete every cart whose TTL has run out by ``as_of`` (default: now)."""

    as_of = DateTime()


@marketplace.repository(part_of=ShoppingCart)
class ShoppingCartRepository:
    def for_owner(self, customer_id=None, session_id=None) -> ShoppingCart | None:
        """The cart of a customer, or of a guest session when no customer is given."""
        if customer_id:
            results = self._dao.query.filter(customer_id=str(customer_id)).all().items
        elif session_id:
            results = self._dao.query.filter(session_id=session_id).all().items
        else:
            return None
        return results[0] if results else None

    def expired(self, now=None) -> list[ShoppingCart]:
        now = now or datetime.now(UTC)
        return [cart for cart in self._dao.query.all().items if cart.is_expired(now)]

    def discard(self, cart):
        self._dao.delete(cart)


def _live_cart(repo, customer_id, session_id):
    """Return the owner's cart, dropping it first if it has expired."""
    cart = repo.for_owner(customer_id=customer_id, session_id=session_id)
    if cart is not None and cart.is_expired():
        repo.discard(cart)
        return None
    return cart


def _require_owner(command):
    if not command.customer_id and not command.session_id:
        raise ValidationError({"cart": ["A customer_id or session_id is required"]})


@marketplace.command_handler(part_of=ShoppingCart)
class ManageCartHandler:
    @handle(AddToCart)
    def add_to_cart(self, command):
        _require_owner(command)
        repo = current_domain.repository_for(ShoppingCart)

        cart = _live_cart(repo, command.customer_id, command.session_id)
        if cart is None:
            cart = ShoppingCart.create(customer_id=command.customer_id, session_id=command.session_id)

        cart.add_item(command.product_id, command.quantity)
        repo.add(cart)
        return str(cart.id)

    @handle(UpdateCartQuantity)
    def update_quantity(self, command):
        _require_owner(command)
        repo = current_domain.repository_for(ShoppingCart)

        cart = _live_cart(repo, command.customer_id, command.session_id)
        if cart is None:
            raise ValidationError({"cart": ["Cart not found"]})

        cart.update_item_quantity(command.product_id, command.quantity)
        repo.add(cart)
        return str(cart.id)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        _require_owner(command)
        repo = current_domain.repository_for(ShoppingCart)

        cart = _live_cart(repo, command.customer_id, command.session_id)
        if cart is None:
            raise ValidationError({"cart": ["Cart not found"]})

        cart.remove_item(command.product_id)
        repo.add(cart)
        return str(cart.id)

    @handle(ClearCart)
    def clear_cart(self, command):
        _require_owner(command)
        repo = current_domain.repository_for(ShoppingCart)

        cart = _live_cart(repo, command.customer_id, command.session_id)
        if cart is None:
            return None

        repo.discard(cart)
        return str(cart.id)

    @handle(MergeCarts)
    def merge_carts(self, command):
        repo = current_domain.repository_for(ShoppingCart)

        session_cart = _live_cart(repo, None, command.session_id)
        if session_cart is None or not session_cart.items or session_cart.is_claimed():
            return 0

        user_cart = _live_cart(repo, command.customer_id, None)
        if user_cart is None:
            user_cart = ShoppingCart.create(customer_id=command.customer_id)

        merged = user_cart.merge_from(session_cart)
        repo.add(user_cart)
        repo.discard(session_cart)
        return merged

    @handle(ClaimCart)
    def claim_cart(self, command):
        _require_owner(command)
        repo = current_domain.repository_for(ShoppingCart)

        cart = _live_cart(repo, command.customer_id, command.session_id)
        if cart is None or not cart.items:
            raise EmptyCart()

        cart.claim_for_checkout(command.token)
        repo.add(cart)
        return str(cart.id)

    @handle(ReleaseCartClaim)
    def release_claim(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        try:
            cart = repo.get(command.cart_id)
        except ObjectNotFoundError:
            return False

        released = cart.release_claim(command.token)
        if released:
            repo.add(cart)
        return released

    @handle(CompleteCartCheckout)
    def complete_checkout(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        try:
            cart = repo.get(command.cart_id)
        except ObjectNotFoundError:
            return 0

        if cart.revision == command.revision and cart.checkout_token == command.token:
            repo.discard(cart)
            return 0

        cart.release_claim(command.token)
        cart.remove_purchased(json.loads(command.purchased))
        if cart.items:
            repo.add(cart)
        else:
            repo.discard(cart)
        return len(cart.items)

    @handle(PurgeExpiredCarts)
    def purge_expired(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        expired = repo.expired(command.as_of)
        for cart in expired:
            repo.discard(cart)
        return len(expired)

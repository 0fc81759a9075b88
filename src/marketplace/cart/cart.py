"""Shopping Cart aggregate — the pre-checkout selection of one customer or guest.

A cart belongs to exactly one identity: a registered customer or an anonymous
session. It is created lazily on the first add, lives until its TTL runs out
after the last change, is deleted on successful checkout, and is folded into
the customer's cart when a guest logs in.

A checkout claims the cart with a token for its duration. The claim keeps a
second checkout of the same cart out; the cart can still be edited, and
``revision`` tells the checkout whether it was.
"""

from datetime import UTC, datetime, timedelta

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from marketplace import config
from marketplace.cart.events import (
    CartItemAdded,
    CartItemRemoved,
    CartQuantityUpdated,
    CartsMerged,
)
from marketplace.domain import marketplace
from marketplace.errors import CheckoutInProgress
from marketplace.utils.money import as_utc

MAX_ITEM_QUANTITY = 10


def merge_items(session_items, user_items, cap=MAX_ITEM_QUANTITY) -> dict[str, int]:
    """Combine two ``{product_id: quantity}`` mappings.

    Quantities of products present in both are summed and capped; products
    only in the session cart are carried over. The user cart's products keep
    their order, new ones follow in session order.
    """
    merged = {str(pid): qty for pid, qty in user_items.items()}
    for product_id, quantity in session_items.items():
        product_id = str(product_id)
        merged[product_id] = min(merged.get(product_id, 0) + quantity, cap)
    return merged


@marketplace.entity(part_of="ShoppingCart")
class CartItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1, max_value=MAX_ITEM_QUANTITY)
    added_at = DateTime()


@marketplace.aggregate
class ShoppingCart:
    customer_id = Identifier()  # Set for registered customers
    session_id = String(max_length=255)  # Set for guests
    items = HasMany(CartItem)
    created_at = DateTime()
    updated_at = DateTime()
    expires_at = DateTime()
    revision = Integer(default=0)  # Bumped by every change to the items
    checkout_token = String(max_length=50)  # Set while a checkout holds the cart
    checkout_claimed_at = DateTime()

    @invariant.post
    def cart_must_have_exactly_one_owner(self):
        if bool(self.customer_id) == bool(self.session_id):
            raise ValidationError({"cart": ["A cart belongs to either a customer or a session, not both"]})

    @invariant.post
    def products_must_be_unique(self):
        product_ids = [str(i.product_id) for i in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValidationError({"items": ["A product can appear only once in a cart"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None):
        now = datetime.now(UTC)
        return cls(
            customer_id=customer_id,
            session_id=None if customer_id else session_id,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=config.cart_ttl_days()),
        )

    @property
    def owner_key(self) -> str:
        if self.customer_id:
            return f"customer:{self.customer_id}"
        return f"session:{self.session_id}"

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= (now or datetime.now(UTC))

    def quantities(self) -> dict[str, int]:
        return {str(i.product_id): i.quantity for i in self.items}

    def _find(self, product_id):
        return next((i for i in self.items if str(i.product_id) == str(product_id)), None)

    def _touch(self, now):
        self.revision = (self.revision or 0) + 1
        self.updated_at = now
        self.expires_at = now + timedelta(days=config.cart_ttl_days())

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, quantity=1):
        """Add a product to the cart, or increase its quantity if already present."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        existing = self._find(product_id)
        new_quantity = (existing.quantity if existing else 0) + quantity
        if new_quantity > MAX_ITEM_QUANTITY:
            raise ValidationError({"quantity": [f"Cannot hold more than {MAX_ITEM_QUANTITY} of a product"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            if existing:
                existing.quantity = new_quantity
            else:
                self.add_items(CartItem(product_id=product_id, quantity=quantity, added_at=now))
            self._touch(now)

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                product_id=str(product_id),
                quantity=quantity,
                new_quantity=new_quantity,
            )
        )

    def update_item_quantity(self, product_id, new_quantity):
        """Set a product's quantity; zero removes it."""
        item = self._find(product_id)
        if item is None:
            raise ValidationError({"product_id": ["Item not found in cart"]})
        if new_quantity == 0:
            self.remove_item(product_id)
            return
        if new_quantity < 0 or new_quantity > MAX_ITEM_QUANTITY:
            raise ValidationError({"quantity": [f"Quantity must be between 0 and {MAX_ITEM_QUANTITY}"]})

        previous_quantity = item.quantity
        now = datetime.now(UTC)
        with atomic_change(self):
            item.quantity = new_quantity
            self._touch(now)

        self.raise_(
            CartQuantityUpdated(
                cart_id=str(self.id),
                product_id=str(product_id),
                previous_quantity=previous_quantity,
                new_quantity=new_quantity,
            )
        )

    def remove_item(self, product_id):
        item = self._find(product_id)
        if item is None:
            raise ValidationError({"product_id": ["Item not found in cart"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.remove_items(item)
            self._touch(now)

        self.raise_(CartItemRemoved(cart_id=str(self.id), product_id=str(product_id)))

    # -------------------------------------------------------------------
    # Cart merging (guest → customer)
    # -------------------------------------------------------------------
    def merge_from(self, session_cart) -> int:
        """Fold a guest cart's items into this customer cart. Returns the number of products merged."""
        incoming = session_cart.quantities()
        if not incoming:
            return 0

        merged = merge_items(incoming, self.quantities())
        now = datetime.now(UTC)

        with atomic_change(self):
            for product_id, quantity in merged.items():
                existing = self._find(product_id)
                if existing is None:
                    self.add_items(CartItem(product_id=product_id, quantity=quantity, added_at=now))
                elif existing.quantity != quantity:
                    existing.quantity = quantity
            self._touch(now)

        self.raise_(
            CartsMerged(
                cart_id=str(self.id),
                source_session_id=str(session_cart.session_id),
                items_merged_count=len(incoming),
            )
        )
        return len(incoming)

    # -------------------------------------------------------------------
    # Checkout claim
    # -------------------------------------------------------------------
    def is_claimed(self, now=None) -> bool:
        """True while a checkout holds this cart and its claim has not gone stale."""
        if not self.checkout_token or self.checkout_claimed_at is None:
            return False
        age = (now or datetime.now(UTC)) - as_utc(self.checkout_claimed_at)
        return age < timedelta(seconds=config.checkout_claim_ttl())

    def claim_for_checkout(self, token, now=None):
        now = now or datetime.now(UTC)
        if self.is_claimed(now) and self.checkout_token != token:
            raise CheckoutInProgress()
        self.checkout_token = token
        self.checkout_claimed_at = now

    def release_claim(self, token) -> bool:
        if self.checkout_token != token:
            return False
        self.checkout_token = None
        self.checkout_claimed_at = None
        return True

    def remove_purchased(self, purchased: dict[str, int]):
        """Take what a checkout bought out of the cart, keeping anything added since."""
        now = datetime.now(UTC)
        with atomic_change(self):
            for product_id, quantity in purchased.items():
                item = self._find(product_id)
                if item is None:
                    continue
                if item.quantity <= quantity:
                    self.remove_items(item)
                else:
                    item.quantity -= quantity
            self._touch(now)

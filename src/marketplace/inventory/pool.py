"""Code pool aggregate — the activation codes held for one product.

A limited product owns a pool of pre-loaded, single-use activation codes.
Claiming marks codes as used by an order; releasing hands them back. The
pool's ``quantity`` is derived: for limited products it always equals the
number of unused codes, and it is only ever changed by ``stock_codes``,
``claim`` and ``release``.

Unlimited and preorder products keep a pool record only to carry their mode;
they never hand out codes.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.errors import InsufficientStock
from marketplace.inventory.events import CodesAllocated, CodesReleased, CodesStocked


class InventoryMode(Enum):
    UNLIMITED = "unlimited"
    LIMITED = "limited"
    PREORDER = "preorder"


@marketplace.entity(part_of="CodePool")
class ActivationCode:
    code = String(required=True, max_length=255)
    sequence = Integer(required=True, min_value=0)
    is_used = Boolean(default=False)
    used_by_order = Identifier()
    used_by_customer = Identifier()
    used_at = DateTime()
    added_at = DateTime()


@marketplace.aggregate
class CodePool:
    product_id = Identifier(identifier=True)
    mode = String(choices=InventoryMode, default=InventoryMode.LIMITED.value)
    codes = HasMany(ActivationCode)
    quantity = Integer(default=0, min_value=0)
    updated_at = DateTime()

    @invariant.post
    def quantity_matches_unused_codes(self):
        if self.mode != InventoryMode.LIMITED.value:
            return
        unused = sum(1 for c in self.codes if not c.is_used)
        if self.quantity != unused:
            raise ValidationError({"quantity": [f"Quantity {self.quantity} does not match {unused} unused codes"]})

    @classmethod
    def open(cls, product_id, mode=InventoryMode.LIMITED.value):
        return cls(
            product_id=product_id,
            mode=mode,
            quantity=0,
            updated_at=datetime.now(UTC),
        )

    @property
    def is_limited(self) -> bool:
        return self.mode == InventoryMode.LIMITED.value

    @property
    def available(self) -> int | None:
        """Unused code count for limited pools, ``None`` when stock is not tracked."""
        return self.quantity if self.is_limited else None

    def _ordered_codes(self):
        return sorted(self.codes, key=lambda c: c.sequence)

    def codes_for_order(self, order_id) -> list[str]:
        return [c.code for c in self._ordered_codes() if c.is_used and str(c.used_by_order) == str(order_id)]

    # -------------------------------------------------------------------
    # Stocking
    # -------------------------------------------------------------------
    def stock_codes(self, codes):
        """Load new activation codes into a limited pool."""
        if not self.is_limited:
            raise ValidationError({"mode": [f"Codes can only be stocked for limited products, not {self.mode}"]})
        if not codes:
            raise ValidationError({"codes": ["At least one code is required"]})

        existing = {c.code for c in self.codes}
        seen = set()
        for code in codes:
            if code in existing or code in seen:
                raise ValidationError({"codes": [f"Duplicate activation code {code}"]})
            seen.add(code)

        now = datetime.now(UTC)
        next_sequence = max((c.sequence for c in self.codes), default=-1) + 1

        with atomic_change(self):
            for offset, code in enumerate(codes):
                self.add_codes(ActivationCode(code=code, sequence=next_sequence + offset, added_at=now))
            self.quantity += len(codes)
            self.updated_at = now

        self.raise_(
            CodesStocked(
                product_id=str(self.product_id),
                added=len(codes),
                available=self.quantity,
            )
        )

    # -------------------------------------------------------------------
    # Claim / release
    # -------------------------------------------------------------------
    def claim(self, order_id, count, customer_id=None) -> list[str]:
        """Mark ``count`` unused codes as issued to ``order_id``, oldest first.

        Claiming again for the same order returns the codes already issued to
        it rather than issuing more.
        """
        if not self.is_limited:
            return []
        if count < 1:
            raise ValidationError({"count": ["Count must be at least 1"]})

        already_issued = self.codes_for_order(order_id)
        if already_issued:
            return already_issued

        unused = [c for c in self._ordered_codes() if not c.is_used]
        if len(unused) < count:
            raise InsufficientStock(str(self.product_id), count, len(unused))

        now = datetime.now(UTC)
        chosen = unused[:count]

        with atomic_change(self):
            for code in chosen:
                code.is_used = True
                code.used_by_order = order_id
                code.used_by_customer = customer_id
                code.used_at = now
            self.quantity -= count
            self.updated_at = now

        issued = [c.code for c in chosen]
        self.raise_(
            CodesAllocated(
                product_id=str(self.product_id),
                order_id=str(order_id),
                count=count,
                remaining=self.quantity,
            )
        )
        return issued

    def release(self, order_id) -> list[str]:
        """Return the codes issued to ``order_id`` to the pool."""
        if not self.is_limited:
            return []

        held = [c for c in self._ordered_codes() if c.is_used and str(c.used_by_order) == str(order_id)]
        if not held:
            return []

        now = datetime.now(UTC)
        with atomic_change(self):
            for code in held:
                code.is_used = False
                code.used_by_order = None
                code.used_by_customer = None
                code.used_at = None
            self.quantity += len(held)
            self.updated_at = now

        self.raise_(
            CodesReleased(
                product_id=str(self.product_id),
                order_id=str(order_id),
                count=len(held),
                available=self.quantity,
            )
        )
        return [c.code for c in held]

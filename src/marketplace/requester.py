"""The authenticated caller of a checkout or cart operation."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Requester:
    """Identity supplied by the auth layer.

    A logged-in customer has ``customer_id``; a guest has only ``session_id``.
    A customer may carry a ``session_id`` too, from before they logged in.
    """

    customer_id: str | None = None
    session_id: str | None = None
    is_plus_member: bool = False
    email: str | None = None

    def __post_init__(self):
        if not self.customer_id and not self.session_id:
            raise ValueError("Requester needs a customer_id or a session_id")

    @property
    def is_guest(self) -> bool:
        return not self.customer_id

    @property
    def owner_key(self) -> str:
        """Lock/lookup key of the cart this requester checks out."""
        if self.customer_id:
            return f"customer:{self.customer_id}"
        return f"session:{self.session_id}"

"""Notification port and factory.

Order confirmation mail is sent by the notifications service. The
fulfillment core hands it the committed order and never waits for, or fails
on, delivery.
"""

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger(__name__)

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "get_notifier",
    "reset_notifier",
    "set_notifier",
]


class Notifier(ABC):
    @abstractmethod
    def order_confirmed(self, order, requester) -> None:
        """Tell the customer their order went through."""
        ...


class LoggingNotifier(Notifier):
    """Records notifications in the log instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def order_confirmed(self, order, requester) -> None:
        message = {
            "order_number": order.order_number,
            "email": requester.email,
            "customer_id": requester.customer_id,
            "total": order.pricing.total,
        }
        self.sent.append(message)
        logger.info("order_confirmation_queued", **message)


_current_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _current_notifier
    if _current_notifier is None:
        _current_notifier = LoggingNotifier()
    return _current_notifier


def set_notifier(notifier: Notifier) -> None:
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None

"""
Notifier interface.
Allows swapping delivery backends without changing request logic.
"""

from abc import ABC, abstractmethod

from app.models.join_request import JoinRequest

# Event types published by the join request engine
JOIN_REQUEST_RECEIVED = "join_request_received"
REQUEST_APPROVED = "request_approved"
REQUEST_DECLINED = "request_declined"
REQUEST_WAITLISTED = "request_waitlisted"
REQUEST_CANCELLED = "request_cancelled"
REQUEST_PROMOTED = "request_promoted"
HOLD_EXTENDED = "hold_extended"
HOLD_EXPIRED = "hold_expired"


class Notifier(ABC):
    """
    Interface for notification delivery.

    Implementations:
    - LoggingNotifier: writes the notification to the structured log
    - RedisNotifier: publishes to a Redis pub/sub channel for push workers

    Called only after the transaction that produced `request` has
    committed. Implementations may raise; the caller logs and moves on,
    a failed notification never fails the request.
    """

    @abstractmethod
    async def notify(self, event_type: str, request: JoinRequest) -> None:
        """
        Deliver one notification.

        Args:
            event_type: One of the event type constants in this module
            request: The join request as committed
        """
        pass

"""
Notification interface, invoked after a booking is confirmed.
"""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """
    Implementations must be safe to call fire-and-forget: the booking engine
    logs failures and never retries or rolls back because of them.
    """

    @abstractmethod
    async def booking_confirmed(self, user_id: int, booking_id: int) -> None:
        pass

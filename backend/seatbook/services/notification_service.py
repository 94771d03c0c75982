"""
Default notifier: records the confirmation in the log stream.
Delivery channels (e-mail, push) plug in behind the same interface.
"""

from seatbook.core.logging import get_logger
from seatbook.services.interfaces.notifier import Notifier

logger = get_logger(__name__)


class LoggingNotifier(Notifier):
    async def booking_confirmed(self, user_id: int, booking_id: int) -> None:
        logger.info("booking_confirmation_sent", user_id=user_id, booking_id=booking_id)

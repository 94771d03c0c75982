"""
Booking commit state machine.

    START -> HOLDS_VALIDATED -> PAYMENT_ATTEMPTED -> CONFIRMED
                   |                    |
                   +-----> COMPENSATING <+
                                |
                                v
                            CANCELLED

The saga only tracks where a single commit attempt is; durable state lives in
the booking and payment rows.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from seatbook.core.clock import Clock, utcnow
from seatbook.core.exceptions import InvalidStateTransition
from seatbook.core.logging import get_logger

logger = get_logger(__name__)


class SagaState(str, Enum):
    START = "start"
    HOLDS_VALIDATED = "holds_validated"
    PAYMENT_ATTEMPTED = "payment_attempted"
    CONFIRMED = "confirmed"
    COMPENSATING = "compensating"
    CANCELLED = "cancelled"


TRANSITIONS = {
    SagaState.START: {SagaState.HOLDS_VALIDATED},
    SagaState.HOLDS_VALIDATED: {SagaState.PAYMENT_ATTEMPTED, SagaState.COMPENSATING},
    SagaState.PAYMENT_ATTEMPTED: {SagaState.CONFIRMED, SagaState.COMPENSATING},
    SagaState.COMPENSATING: {SagaState.CANCELLED},
    SagaState.CONFIRMED: set(),
    SagaState.CANCELLED: set(),
}


class BookingSaga:
    def __init__(self, user_id: int, event_id: int, clock: Clock = utcnow):
        self.user_id = user_id
        self.event_id = event_id
        self.booking_id: Optional[int] = None
        self.state = SagaState.START
        self.clock = clock
        self.history: list[tuple[SagaState, datetime]] = [(self.state, clock())]

    @property
    def finished(self) -> bool:
        return not TRANSITIONS[self.state]

    def can_advance(self, target: SagaState) -> bool:
        return target in TRANSITIONS[self.state]

    def advance(self, target: SagaState) -> None:
        if not self.can_advance(target):
            raise InvalidStateTransition(
                self.state.value, target.value, booking_id=self.booking_id
            )
        logger.debug(
            "saga_transition",
            booking_id=self.booking_id,
            from_state=self.state.value,
            to_state=target.value,
        )
        self.state = target
        self.history.append((target, self.clock()))

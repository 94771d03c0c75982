"""
Reservation ledger interface.
The ledger is the shared, TTL-capable store of soft holds (seat -> holder).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional


@dataclass(frozen=True)
class Reservation:
    event_id: int
    seat_id: int
    holder_id: int
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


class ReservationLedger(ABC):
    """
    Interface for reservation ledgers.

    Implementations:
    - RedisReservationLedger: shared across every server instance, keys
      carry a TTL and multi-seat claims are atomic (WATCH/MULTI)

    Entries are always subordinate to the durable seat status. Losing an
    entry must only ever make a seat look available, never booked.
    """

    @abstractmethod
    async def lookup(
        self, event_id: int, seat_ids: Iterable[int], now: datetime
    ) -> dict[int, Reservation]:
        """
        Return live entries for the given seats.

        Entries whose expires_at has passed are treated as absent.
        """
        pass

    @abstractmethod
    async def claim(
        self,
        event_id: int,
        seat_ids: Iterable[int],
        holder_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """
        Atomically write entries for every seat, or none of them.

        Raises:
            SeatContended: a seat has a live entry for a different holder,
                or a seat's entry changed while the claim was in progress
        """
        pass

    @abstractmethod
    async def release(
        self, event_id: int, seat_ids: Iterable[int], holder_id: Optional[int] = None
    ) -> list[int]:
        """
        Remove entries. With holder_id, only entries owned by that holder.

        Returns:
            Seat IDs whose entries were removed
        """
        pass

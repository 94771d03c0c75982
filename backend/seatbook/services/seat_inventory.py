"""
Seat inventory store: durable, per-seat conditional updates.

CONCURRENCY STRATEGY: Optimistic compare-and-swap per seat
===========================================================

Problem:
  Two users ask for the same seat at the same time. Both read it as
  available, both mark it reserved, both think they won.

Solution:
  Every seat row carries a `version` counter.

  1. Read the seats (and their versions) inside the caller's transaction
  2. UPDATE seats SET status = 'reserved', version = version + 1
     WHERE id = :id AND version = :seen_version AND status != 'booked'
  3. If rows_affected == 0, somebody else changed the seat first: the whole
     request fails as contended and the transaction rolls back

  The only lock taken is the row lock of the UPDATE itself, held until the
  caller's short transaction commits. No lock is ever held while a payment
  call is in flight: the orchestrator commits before talking to the gateway.

Only the reservation coordinator and the booking orchestrator call the
mutating functions in this module.
"""

from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatbook.core.exceptions import InternalInconsistency, SeatContended, SeatNotFound
from seatbook.core.logging import get_logger
from seatbook.models.seat import Seat, SeatStatus

logger = get_logger(__name__)


async def get_seats(
    db: AsyncSession,
    event_id: int,
    seat_ids: Iterable[int],
    refresh: bool = False,
) -> list[Seat]:
    """
    Load seats of one event ordered by id.
    Raises SeatNotFound if any ID does not belong to the event.
    """
    seat_ids = sorted(set(seat_ids))
    query = (
        select(Seat)
        .where(Seat.event_id == event_id, Seat.id.in_(seat_ids))
        .order_by(Seat.id)
    )
    if refresh:
        query = query.execution_options(populate_existing=True)

    result = await db.execute(query)
    seats = list(result.scalars().all())

    missing = set(seat_ids) - {seat.id for seat in seats}
    if missing:
        raise SeatNotFound(event_id, missing)
    return seats


async def reserve(db: AsyncSession, seats: Sequence[Seat]) -> None:
    """
    Mark seats reserved with a per-seat compare-and-swap on `version`.
    All-or-nothing: raises SeatContended listing every seat that lost the race.
    """
    lost = []
    for seat in seats:
        result = await db.execute(
            update(Seat)
            .where(
                Seat.id == seat.id,
                Seat.version == seat.version,
                Seat.status != SeatStatus.BOOKED,
            )
            .values(status=SeatStatus.RESERVED, version=Seat.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            lost.append(seat.id)

    if lost:
        logger.info("seat_cas_conflict", seat_ids=lost)
        raise SeatContended(lost)


async def mark_booked(db: AsyncSession, seat_ids: Iterable[int], booking_id: int) -> None:
    """
    Flip reserved seats to booked for a booking.
    Any seat that is already booked means the durable state disagrees with the
    booking being confirmed, which is reported as InternalInconsistency.
    """
    seat_ids = sorted(set(seat_ids))
    result = await db.execute(
        update(Seat)
        .where(
            Seat.id.in_(seat_ids),
            Seat.status != SeatStatus.BOOKED,
            Seat.booking_id.is_(None),
        )
        .values(status=SeatStatus.BOOKED, booking_id=booking_id, version=Seat.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(seat_ids):
        raise InternalInconsistency(
            f"Only {result.rowcount} of {len(seat_ids)} seats could be booked",
            booking_id=booking_id,
            seat_ids=seat_ids,
        )


async def release(db: AsyncSession, seat_ids: Iterable[int], only_unbooked: bool = True) -> int:
    """
    Return seats to the pool. By default only reserved seats are touched;
    with only_unbooked=False booked seats are freed too and lose their booking.
    Returns the number of seats released.
    """
    seat_ids = sorted(set(seat_ids))
    if not seat_ids:
        return 0
    query = update(Seat).where(Seat.id.in_(seat_ids))
    if only_unbooked:
        query = query.where(Seat.status == SeatStatus.RESERVED)
    else:
        query = query.where(Seat.status != SeatStatus.AVAILABLE)
    result = await db.execute(
        query
        .values(status=SeatStatus.AVAILABLE, booking_id=None, version=Seat.version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def reset_stale(db: AsyncSession, seats: Sequence[Seat]) -> list[int]:
    """
    Reset reserved seats whose hold has vanished.

    Conditional on the version we read, so a seat that a concurrent request
    has just re-reserved is left alone.
    """
    reset = []
    for seat in seats:
        result = await db.execute(
            update(Seat)
            .where(
                Seat.id == seat.id,
                Seat.version == seat.version,
                Seat.status == SeatStatus.RESERVED,
            )
            .values(status=SeatStatus.AVAILABLE, version=Seat.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            reset.append(seat.id)
    return reset


async def release_booking(db: AsyncSession, booking_id: int) -> int:
    """Free every seat currently booked by a booking."""
    result = await db.execute(
        update(Seat)
        .where(Seat.booking_id == booking_id)
        .values(status=SeatStatus.AVAILABLE, booking_id=None, version=Seat.version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

"""
Booking rows and their conditional state transitions.

Every transition is a conditional UPDATE on the current status, so two actors
racing on the same booking (the orchestrator confirming it, the recovery sweep
cancelling it) can never both win:

    UPDATE bookings SET status = 'confirmed' WHERE id = :id AND status = 'pending'

The loser sees rows_affected == 0 and backs off. Callers own the transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatbook.core.logging import get_logger
from seatbook.models.booking import Booking, BookingSeat, BookingStatus
from seatbook.models.payment import Payment, PaymentStatus
from seatbook.models.seat import Seat
from seatbook.services import seat_inventory

logger = get_logger(__name__)


@dataclass
class CancelledPending:
    """Outcome of cancelling a pending booking."""

    booking_id: int
    seat_ids: list[int]
    payment_id: Optional[int]
    payment_status: Optional[str]

    @property
    def needs_refund(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED


def reference_for(booking_id: int) -> str:
    return f"BK{booking_id:08d}"


async def get_booking(db: AsyncSession, booking_id: int, refresh: bool = False) -> Optional[Booking]:
    query = select(Booking).where(Booking.id == booking_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_for_user(db: AsyncSession, user_id: int) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def pending_for_seats(db: AsyncSession, seat_ids: Iterable[int]) -> list[Booking]:
    """Pending bookings that include any of the given seats."""
    seat_ids = sorted(set(seat_ids))
    if not seat_ids:
        return []
    covering = select(BookingSeat.booking_id).where(BookingSeat.seat_id.in_(seat_ids))
    result = await db.execute(
        select(Booking)
        .where(Booking.id.in_(covering), Booking.status == BookingStatus.PENDING)
        .order_by(Booking.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def expired_pending(db: AsyncSession, now: datetime, limit: int = 100) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING,
            Booking.hold_expires_at.is_not(None),
            Booking.hold_expires_at <= now,
        )
        .order_by(Booking.hold_expires_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def create_pending(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    seats: Sequence[Seat],
    method: str,
    hold_expires_at: datetime,
) -> Booking:
    """Insert a pending booking, its seat rows and a pending payment."""
    total = sum((Decimal(seat.price) for seat in seats), Decimal("0"))
    booking = Booking(
        user_id=user_id,
        event_id=event_id,
        status=BookingStatus.PENDING,
        quantity=len(seats),
        total_amount=total,
        hold_expires_at=hold_expires_at,
    )
    for seat in seats:
        booking.seats.append(BookingSeat(seat_id=seat.id, price_at_booking=seat.price))
    booking.payment = Payment(method=method, amount=total, status=PaymentStatus.PENDING)
    db.add(booking)
    await db.flush()

    booking.reference_number = reference_for(booking.id)
    await db.flush()
    return booking


async def confirm_pending(db: AsyncSession, booking_id: int, now: datetime) -> bool:
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
        .values(status=BookingStatus.CONFIRMED, confirmed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel_pending(
    db: AsyncSession, booking_id: int, reason: str, now: datetime
) -> Optional[CancelledPending]:
    """
    Cancel a pending booking and undo its side effects in durable state:
    reserved seats go back to available and a pending payment is marked failed.

    Returns None if the booking was no longer pending. A completed payment is
    left as is; refunding it is the caller's job once this transaction commits.
    """
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
        .values(
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason[:255],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None

    seat_rows = await db.execute(
        select(BookingSeat.seat_id).where(BookingSeat.booking_id == booking_id)
    )
    seat_ids = sorted(seat_rows.scalars().all())
    released = await seat_inventory.release(db, seat_ids)

    await db.execute(
        update(Payment)
        .where(Payment.booking_id == booking_id, Payment.status == PaymentStatus.PENDING)
        .values(status=PaymentStatus.FAILED, failure_reason=reason[:500], updated_at=now)
        .execution_options(synchronize_session=False)
    )
    payment_result = await db.execute(
        select(Payment)
        .where(Payment.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    payment = payment_result.scalar_one_or_none()

    logger.info(
        "pending_booking_cancelled",
        booking_id=booking_id,
        reason=reason,
        seats_released=released,
        payment_status=payment.status if payment else None,
    )
    return CancelledPending(
        booking_id=booking_id,
        seat_ids=seat_ids,
        payment_id=payment.id if payment else None,
        payment_status=payment.status if payment else None,
    )


async def cancel_confirmed(db: AsyncSession, booking_id: int, reason: str, now: datetime) -> bool:
    """Cancel a confirmed booking and free its seats."""
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.CONFIRMED)
        .values(
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason[:255],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    released = await seat_inventory.release_booking(db, booking_id)
    logger.info("confirmed_booking_cancelled", booking_id=booking_id, seats_released=released)
    return True

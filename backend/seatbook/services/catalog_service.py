"""
Event catalogue lookups used by the booking engine.

The catalogue itself is owned elsewhere; the engine only reads from it. The
seeding helper exists for event setup scripts and tests, where seats are
created once per event.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatbook.core.clock import as_utc
from seatbook.core.exceptions import EventNotFound, EventNotOpen
from seatbook.core.logging import get_logger
from seatbook.models.event import Event
from seatbook.models.seat import Seat, SeatStatus

logger = get_logger(__name__)


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event by ID."""
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()

    if not event:
        raise EventNotFound(event_id)
    return event


async def ensure_open(db: AsyncSession, event_id: int, now: datetime) -> Event:
    """Confirm the event exists, is open, and has not started yet."""
    event = await get_event(db, event_id)
    if not event.is_open:
        raise EventNotOpen(event_id)
    if as_utc(event.date) <= now:
        raise EventNotOpen(event_id, f"Event {event_id} has already started")
    return event


async def create_event_with_seats(
    db: AsyncSession,
    title: str,
    date: datetime,
    seats: Iterable[tuple[str, str, str, Decimal]],
    venue: Optional[str] = None,
) -> Event:
    """
    Create an event and its seat inventory.

    `seats` yields (section, row, seat_number, price) tuples.
    """
    event = Event(title=title, date=date, venue=venue, is_open=True)
    db.add(event)
    await db.flush()

    count = 0
    for section, row, seat_number, price in seats:
        db.add(
            Seat(
                event_id=event.id,
                section=section,
                row=row,
                seat_number=seat_number,
                price=Decimal(price),
                status=SeatStatus.AVAILABLE,
                version=1,
            )
        )
        count += 1
    await db.flush()

    logger.info("event_created", event_id=event.id, title=title, seats=count)
    return event


def grid_layout(section: str, rows: str, seats_per_row: int, price: Decimal):
    """Simple rectangular layout: rows 'AB' x 3 -> A1 A2 A3 B1 B2 B3."""
    for row in rows:
        for number in range(1, seats_per_row + 1):
            yield section, row, str(number), price

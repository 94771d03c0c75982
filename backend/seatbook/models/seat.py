"""
Seat model: the durable, authoritative record of seat ownership.

Key design decisions:
- `status` is the ground truth; the Redis reservation ledger is a fast-path
  index that is always reconciled against it.
- `version` enables optimistic compare-and-swap updates, so concurrent holds
  for the same seat resolve to exactly one winner without table locks.
- `booking_id` is set only while the seat is booked.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from seatbook.db.base import Base, TimestampMixin


class SeatStatus:
    AVAILABLE = "available"
    RESERVED = "reserved"
    BOOKED = "booked"


class Seat(Base, TimestampMixin):
    __tablename__ = "seats"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    seat_number = Column(String(10), nullable=False)
    row = Column(String(10), nullable=False)
    section = Column(String(50), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=SeatStatus.AVAILABLE)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    event = relationship("Event", back_populates="seats", lazy="raise")

    __table_args__ = (
        UniqueConstraint("event_id", "section", "row", "seat_number", name="uq_seat_position"),
        CheckConstraint("price >= 0", name="check_seat_price_non_negative"),
        CheckConstraint("status IN ('available', 'reserved', 'booked')", name="check_seat_status"),
        # A booked seat must point at its booking, an unbooked one must not
        CheckConstraint(
            "(status = 'booked') = (booking_id IS NOT NULL)",
            name="check_seat_booking_link",
        ),
        Index("ix_seats_event_status", "event_id", "status"),
    )

    @property
    def label(self) -> str:
        return f"{self.section}-{self.row}{self.seat_number}"

    def __repr__(self) -> str:
        return f"<Seat(id={self.id}, event={self.event_id}, {self.label}, status={self.status})>"

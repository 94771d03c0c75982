"""
Booking model and its immutable seat membership.

Key design decisions:
- A booking is created `pending` before the payment call; the persisted
  pending state is what lets a crashed commit be recovered later.
- `hold_expires_at` is the deadline after which a still-pending booking is
  considered abandoned and may be cancelled by the recovery sweep.
- Seat membership lives in `booking_seats` and is never modified after insert.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from seatbook.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)
    quantity = Column(Integer, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    reference_number = Column(String(50), nullable=True)
    hold_expires_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    seats = relationship(
        "BookingSeat",
        back_populates="booking",
        lazy="selectin",
        order_by="BookingSeat.seat_id",
        cascade="all, delete-orphan",
    )
    payment = relationship("Payment", back_populates="booking", uselist=False, lazy="selectin")
    event = relationship("Event", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_booking_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="check_booking_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"
        ),
        # Recovery sweep scans pending bookings by deadline
        Index("ix_bookings_status_hold_expires", "status", "hold_expires_at"),
    )

    @property
    def seat_ids(self) -> list[int]:
        return [item.seat_id for item in self.seats]

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"


class BookingSeat(Base):
    __tablename__ = "booking_seats"

    booking_id = Column(Integer, ForeignKey("bookings.id"), primary_key=True)
    seat_id = Column(Integer, ForeignKey("seats.id"), primary_key=True, index=True)
    price_at_booking = Column(Numeric(10, 2), nullable=False)

    booking = relationship("Booking", back_populates="seats")
    seat = relationship("Seat", lazy="selectin")

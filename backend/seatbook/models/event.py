"""
Event model: the read-only catalogue projection the booking engine needs.

The engine only ever asks two questions of an event: is it open for booking,
and when does it start (for the cancellation cutoff). Full catalogue CRUD
lives elsewhere.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index
from sqlalchemy.orm import relationship

from seatbook.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    venue = Column(String(255), nullable=True)
    is_open = Column(Boolean, nullable=False, default=True)

    seats = relationship("Seat", back_populates="event", lazy="raise")

    __table_args__ = (
        Index("ix_events_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, open={self.is_open})>"

"""
Pydantic schemas for seat holds.
"""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class SeatResponse(BaseModel):
    id: int
    event_id: int
    section: str
    row: str
    seat_number: str
    label: str
    price: Decimal
    status: str

    model_config = {"from_attributes": True}


class HoldRequest(BaseModel):
    event_id: int
    seat_ids: list[int] = Field(..., min_length=1)


class HoldResponse(BaseModel):
    event_id: int
    holder_id: int
    seat_ids: list[int]
    expires_at: datetime
    refreshed: list[int]
    seats: list[SeatResponse]

    model_config = {"from_attributes": True}


class HoldReleaseResponse(BaseModel):
    event_id: int
    released_seat_ids: list[int]

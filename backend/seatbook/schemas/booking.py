"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PaymentDetails(BaseModel):
    method: Literal["wallet", "card"] = "wallet"
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class BookingCreate(BaseModel):
    event_id: int
    seat_ids: list[int] = Field(..., min_length=1)
    payment: PaymentDetails = Field(default_factory=PaymentDetails)


class BookedSeatResponse(BaseModel):
    seat_id: int
    price_at_booking: Decimal

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    method: str
    amount: Decimal
    status: str
    provider_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    status: str
    quantity: int
    total_amount: Decimal
    reference_number: Optional[str]
    hold_expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    seats: list[BookedSeatResponse]
    payment: Optional[PaymentResponse] = None

    model_config = {"from_attributes": True}

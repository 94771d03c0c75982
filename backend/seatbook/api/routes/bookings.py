"""
Booking endpoints: commit held seats with payment, inspect, cancel.
"""

from fastapi import APIRouter, Depends, status

from seatbook.api.deps import get_current_user_id, get_orchestrator
from seatbook.schemas.booking import BookingCreate, BookingResponse
from seatbook.services.booking_service import BookingOrchestrator
from seatbook.services.payment_service import PaymentIntent

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: int = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Book seats and pay for them.

    No lock is held while the payment is processed. If payment fails the
    booking is cancelled, seats are released and the payment error is returned.
    """
    payment = booking_data.payment
    intent = PaymentIntent(
        method=payment.method,
        order_id=payment.order_id,
        payment_id=payment.payment_id,
        signature=payment.signature,
    )
    return await orchestrator.create_booking_with_payment(
        user_id, booking_data.event_id, booking_data.seat_ids, intent
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: int = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Get all bookings for the caller."""
    return await orchestrator.list_user_bookings(user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_booking_status(booking_id, user_id)


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Cancel a booking, release its seats and refund the payment."""
    return await orchestrator.cancel_booking(booking_id, user_id)

"""
Seat hold endpoints.
"""

from fastapi import APIRouter, Depends, status

from seatbook.api.deps import get_coordinator, get_current_user_id
from seatbook.schemas.hold import HoldReleaseResponse, HoldRequest, HoldResponse
from seatbook.services.reservation_service import ReservationCoordinator

router = APIRouter(prefix="/holds", tags=["Holds"])


@router.post("/", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def request_hold(
    hold: HoldRequest,
    user_id: int = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """
    Hold seats for the caller for HOLD_DURATION_SECONDS.

    All-or-nothing: 409 if any seat is booked or held by someone else.
    Re-holding seats the caller already holds extends the hold.
    """
    return await coordinator.request_hold(hold.event_id, hold.seat_ids, user_id)


@router.delete("/", response_model=HoldReleaseResponse)
async def release_hold(
    hold: HoldRequest,
    user_id: int = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Give held seats back before the hold expires."""
    released = await coordinator.release_hold(hold.event_id, hold.seat_ids, user_id)
    return HoldReleaseResponse(event_id=hold.event_id, released_seat_ids=released)

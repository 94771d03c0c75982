"""
Request dependencies shared by the route modules.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from seatbook.services.booking_service import BookingOrchestrator
from seatbook.services.payment_service import PaymentService
from seatbook.services.reservation_service import ReservationCoordinator
from seatbook.services.strategy_factory import Services, get_services


async def get_current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    """
    Caller identity. Authentication happens upstream (gateway or proxy),
    which forwards the verified user id in X-User-ID.
    """
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    return x_user_id


async def get_coordinator(services: Services = Depends(get_services)) -> ReservationCoordinator:
    return services.coordinator


async def get_orchestrator(services: Services = Depends(get_services)) -> BookingOrchestrator:
    return services.orchestrator


async def get_payment_service(services: Services = Depends(get_services)) -> PaymentService:
    return services.payments

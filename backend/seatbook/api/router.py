"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from seatbook.api.routes import bookings, holds, payments, wallet

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(holds.router)
api_router.include_router(bookings.router)
api_router.include_router(wallet.router)
api_router.include_router(payments.router)

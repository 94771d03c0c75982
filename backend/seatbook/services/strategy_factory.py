"""
Service wiring.
Chooses the payment gateway from settings and builds the engine singletons.
"""

from typing import Optional

from seatbook.core.config import Settings, get_settings
from seatbook.db.session import get_sessionmaker
from seatbook.infrastructure.payment_gateway import MockPaymentGateway, RazorpayGateway
from seatbook.infrastructure.redis_client import get_redis
from seatbook.services.booking_service import BookingOrchestrator
from seatbook.services.interfaces.notifier import Notifier
from seatbook.services.interfaces.payment_gateway import PaymentGateway
from seatbook.services.notification_service import LoggingNotifier
from seatbook.services.payment_service import PaymentService
from seatbook.services.reservation_ledger import RedisReservationLedger
from seatbook.services.reservation_service import ReservationCoordinator


def get_payment_gateway(settings: Optional[Settings] = None) -> PaymentGateway:
    """
    Get configured card gateway.

    - mock: MockPaymentGateway (development, tests)
    - razorpay: RazorpayGateway, requires RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET
    """
    settings = settings or get_settings()
    if settings.PAYMENT_GATEWAY == "razorpay":
        if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
            raise RuntimeError("PAYMENT_GATEWAY=razorpay requires RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET")
        return RazorpayGateway(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            api_url=settings.RAZORPAY_API_URL,
        )
    return MockPaymentGateway(
        secret=settings.RAZORPAY_KEY_SECRET or "mock_secret",
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
    )


def get_notifier() -> Notifier:
    return LoggingNotifier()


class Services:
    """The engine's long-lived collaborators, built once per process."""

    def __init__(
        self,
        coordinator: ReservationCoordinator,
        orchestrator: BookingOrchestrator,
        payments: PaymentService,
    ):
        self.coordinator = coordinator
        self.orchestrator = orchestrator
        self.payments = payments


async def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    sessions = get_sessionmaker()
    ledger = RedisReservationLedger(await get_redis(), settings.LEDGER_KEY_PREFIX)
    payments = PaymentService(sessions, get_payment_gateway(settings), settings)
    coordinator = ReservationCoordinator(sessions, ledger, payments, settings)
    orchestrator = BookingOrchestrator(sessions, coordinator, payments, get_notifier(), settings)
    return Services(coordinator, orchestrator, payments)


# Singleton instance
_services: Optional[Services] = None


async def get_services() -> Services:
    """Get the engine singletons, building them on first use."""
    global _services
    if _services is None:
        _services = await build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services

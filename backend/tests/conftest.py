"""
Pytest fixtures: a throwaway SQLite database, an in-memory Redis, a
controllable clock, and the engine services wired together.

Each test gets its own database file so concurrent transactions really do
run on separate connections.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from seatbook.core.config import Settings
from seatbook.db.base import Base
from seatbook.infrastructure.payment_gateway import MockPaymentGateway
from seatbook.infrastructure.redis_client import RedisClient
from seatbook.main import app
from seatbook.models.booking import Booking
from seatbook.models.payment import PaymentMethod
from seatbook.models.seat import Seat
from seatbook.models.user import User
from seatbook.models.wallet_transaction import WalletTransaction
from seatbook.services.booking_service import BookingOrchestrator
from seatbook.services.catalog_service import create_event_with_seats, grid_layout
from seatbook.services.interfaces.notifier import Notifier
from seatbook.services.payment_service import PaymentIntent, PaymentService
from seatbook.services.reservation_ledger import RedisReservationLedger
from seatbook.services.reservation_service import ReservationCoordinator
from seatbook.services.strategy_factory import Services, get_services

SEAT_PRICE = Decimal("50.00")
STARTING_BALANCE = Decimal("200.00")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    async def booking_confirmed(self, user_id: int, booking_id: int) -> None:
        self.sent.append((user_id, booking_id))


class Inspector:
    """Reads committed state straight from the database."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    async def seats(self, seat_ids) -> dict[int, Seat]:
        async with self.sessions() as db:
            result = await db.execute(select(Seat).where(Seat.id.in_(list(seat_ids))))
            return {seat.id: seat for seat in result.scalars().all()}

    async def statuses(self, seat_ids) -> list[str]:
        seats = await self.seats(seat_ids)
        return [seats[seat_id].status for seat_id in seat_ids]

    async def balance(self, user_id: int) -> Decimal:
        async with self.sessions() as db:
            user = await db.get(User, user_id)
            return Decimal(str(user.wallet_balance)).quantize(Decimal("0.01"))

    async def booking(self, booking_id: int) -> Booking:
        async with self.sessions() as db:
            result = await db.execute(select(Booking).where(Booking.id == booking_id))
            return result.scalar_one()

    async def bookings_for(self, user_id: int) -> list[Booking]:
        async with self.sessions() as db:
            result = await db.execute(select(Booking).where(Booking.user_id == user_id))
            return list(result.scalars().all())

    async def wallet_transactions(self, user_id: int) -> list[WalletTransaction]:
        async with self.sessions() as db:
            result = await db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.user_id == user_id)
                .order_by(WalletTransaction.id)
            )
            return list(result.scalars().all())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        HOLD_DURATION_SECONDS=600,
        MAX_SEATS_PER_HOLD=6,
        PAYMENT_TIMEOUT_SECONDS=2.0,
        CANCELLATION_CUTOFF_HOURS=24,
        AUTO_HOLD_ON_BOOKING=True,
        LEDGER_KEY_PREFIX="test:hold",
        PAYMENT_GATEWAY="mock",
        RAZORPAY_WEBHOOK_SECRET=None,
    )


@pytest_asyncio.fixture
async def sessions(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, drop the engine afterwards."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'seatbook.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def ledger(redis_client) -> RedisReservationLedger:
    return RedisReservationLedger(redis_client, key_prefix="test:hold")


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway(secret="test_secret")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def payments(sessions, gateway, settings, clock) -> PaymentService:
    return PaymentService(sessions, gateway, settings, clock)


@pytest.fixture
def coordinator(sessions, ledger, payments, settings, clock) -> ReservationCoordinator:
    return ReservationCoordinator(sessions, ledger, payments, settings, clock)


@pytest.fixture
def orchestrator(sessions, coordinator, payments, notifier, settings, clock) -> BookingOrchestrator:
    return BookingOrchestrator(sessions, coordinator, payments, notifier, settings, clock)


@pytest.fixture
def inspector(sessions) -> Inspector:
    return Inspector(sessions)


async def _create_user(sessions, name: str, balance: Decimal) -> User:
    async with sessions() as db:
        async with db.begin():
            user = User(email=f"{name}@example.com", username=name, wallet_balance=balance)
            db.add(user)
    return user


@pytest_asyncio.fixture
async def alice(sessions) -> User:
    return await _create_user(sessions, "alice", STARTING_BALANCE)


@pytest_asyncio.fixture
async def bob(sessions) -> User:
    return await _create_user(sessions, "bob", STARTING_BALANCE)


@pytest_asyncio.fixture
async def carol(sessions) -> User:
    """A user with an empty wallet."""
    return await _create_user(sessions, "carol", Decimal("0.00"))


@pytest_asyncio.fixture
async def event_seats(sessions, clock) -> tuple[int, list[int]]:
    """An open event 30 days out with 10 seats (rows A and B) at 50.00."""
    async with sessions() as db:
        async with db.begin():
            event = await create_event_with_seats(
                db,
                title="Test Concert",
                date=clock.now + timedelta(days=30),
                seats=grid_layout("Floor", "AB", 5, SEAT_PRICE),
                venue="Test Venue",
            )
            result = await db.execute(select(Seat.id).where(Seat.event_id == event.id).order_by(Seat.id))
            seat_ids = list(result.scalars().all())
    return event.id, seat_ids


@pytest_asyncio.fixture
async def client(
    coordinator, orchestrator, payments, redis_client
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test services."""
    services = Services(coordinator, orchestrator, payments)

    async def override_get_services():
        return services

    app.dependency_overrides[get_services] = override_get_services
    RedisClient.set_client(redis_client)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await orchestrator.drain()
    RedisClient.set_client(None)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    """X-User-ID headers for a user."""

    def _headers(user: User) -> dict:
        return {"X-User-ID": str(user.id)}

    return _headers


@pytest.fixture
def checkout(payments, gateway):
    """Open a processor order for a user and return the signed card intent paying it."""

    async def _checkout(user: User, amount: Decimal, payment_id: str) -> PaymentIntent:
        order = await payments.create_payment_order(user.id, amount)
        return PaymentIntent(
            method=PaymentMethod.CARD,
            order_id=order.order_id,
            payment_id=payment_id,
            signature=gateway.sign(order.order_id, payment_id),
        )

    return _checkout

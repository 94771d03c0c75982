"""
Reservation coordinator: the only entry point for soft holds.

A hold lives in two places:

  - the ledger (Redis): who holds the seat and until when
  - the seat row: status 'reserved', guarded by the version CAS

The seat row is authoritative. The ledger is consulted to tell a live hold
from a stale one, and is reconciled lazily on every access:

  reserved + live ledger entry            -> held by the entry's holder
  reserved + no entry + live pending      -> held by that booking's user
  reserved + no entry + expired pending   -> booking recovered, seat freed
  reserved + no entry + nothing           -> stale, reset to available

So losing a ledger entry can only ever make a seat look available; it never
frees a seat under a booking that is still being paid for.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seatbook.core.clock import Clock, as_utc, utcnow
from seatbook.core.config import Settings, get_settings
from seatbook.core.exceptions import (
    BookingEngineError,
    HoldExpired,
    InvalidSeatSelection,
    SeatContended,
    SeatUnavailable,
)
from seatbook.core.logging import get_logger
from seatbook.core.metrics import (
    hold_releases,
    pending_bookings_recovered,
    record_hold_attempt,
    stale_holds_recovered,
)
from seatbook.models.booking import Booking
from seatbook.models.seat import Seat, SeatStatus
from seatbook.services import booking_repository, catalog_service, seat_inventory
from seatbook.services.interfaces.ledger import ReservationLedger

logger = get_logger(__name__)


@dataclass
class HoldResult:
    event_id: int
    holder_id: int
    seat_ids: list[int]
    expires_at: datetime
    refreshed: list[int] = field(default_factory=list)
    seats: list[Seat] = field(default_factory=list)


@dataclass
class SweepResult:
    bookings_recovered: list[int] = field(default_factory=list)
    seats_reset: list[int] = field(default_factory=list)


class ReservationCoordinator:
    """
    Grants, refreshes, verifies and releases holds.

    `payments` is used only to refund a captured payment whose pending
    booking had to be recovered; it may be omitted where no payments exist.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        ledger: ReservationLedger,
        payments=None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.ledger = ledger
        self.payments = payments
        self.settings = settings or get_settings()
        self.clock = clock

    @property
    def hold_duration(self) -> timedelta:
        return timedelta(seconds=self.settings.HOLD_DURATION_SECONDS)

    def normalize_selection(self, seat_ids: Iterable[int]) -> list[int]:
        seat_ids = sorted(set(seat_ids))
        if not seat_ids:
            raise InvalidSeatSelection("At least one seat must be selected")
        if len(seat_ids) > self.settings.MAX_SEATS_PER_HOLD:
            raise InvalidSeatSelection(
                f"Cannot hold more than {self.settings.MAX_SEATS_PER_HOLD} seats at once",
                max_seats=self.settings.MAX_SEATS_PER_HOLD,
            )
        return seat_ids

    async def request_hold(self, event_id: int, seat_ids: Iterable[int], holder_id: int) -> HoldResult:
        """
        Hold every requested seat for `holder_id`, or none of them.

        Seats the caller already holds are refreshed to a new expiry.

        Raises:
            SeatUnavailable: a seat is booked
            SeatContended: a seat is held by someone else, or lost a race
            EventNotOpen, SeatNotFound, InvalidSeatSelection, LedgerUnavailable
        """
        seat_ids = self.normalize_selection(seat_ids)
        now = self.clock()
        expires_at = now + self.hold_duration

        claimed = False
        needs_heal = False
        refunds: list[int] = []
        try:
            async with self.sessions() as db:
                async with db.begin():
                    await catalog_service.ensure_open(db, event_id, now)
                    seats = await seat_inventory.get_seats(db, event_id, seat_ids)
                    claims, expired = await self._resolve_claims(db, event_id, seats, now)
                    needs_heal = bool(expired) or any(
                        seat.status == SeatStatus.RESERVED and seat.id not in claims for seat in seats
                    )

                    booked = [seat.id for seat in seats if seat.status == SeatStatus.BOOKED]
                    if booked:
                        raise SeatUnavailable(booked)
                    contended = [sid for sid, holder in claims.items() if holder != holder_id]
                    if contended:
                        raise SeatContended(contended)

                    if expired:
                        refunds = await self._recover(db, expired, now)
                        seats = await seat_inventory.get_seats(db, event_id, seat_ids, refresh=True)

                    await seat_inventory.reserve(db, seats)
                    await self.ledger.claim(event_id, seat_ids, holder_id, expires_at, now)
                    claimed = True
                    seats = await seat_inventory.get_seats(db, event_id, seat_ids, refresh=True)
        except (SeatUnavailable, SeatContended) as e:
            record_hold_attempt("unavailable" if isinstance(e, SeatUnavailable) else "contended")
            logger.info("hold_rejected", event_id=event_id, holder_id=holder_id, reason=e.code, seat_ids=e.seat_ids)
            if needs_heal:
                await self._heal_quietly(event_id, seat_ids)
            raise
        except Exception:
            record_hold_attempt("error")
            if claimed:
                # The DB commit failed after the ledger accepted the claim
                await self.ledger.release(event_id, seat_ids, holder_id)
            raise

        await self._settle_refunds(refunds)

        refreshed = sorted(sid for sid, holder in claims.items() if holder == holder_id)
        record_hold_attempt("granted")
        logger.info(
            "hold_granted",
            event_id=event_id,
            holder_id=holder_id,
            seat_ids=seat_ids,
            refreshed=refreshed,
            expires_at=expires_at.isoformat(),
        )
        return HoldResult(
            event_id=event_id,
            holder_id=holder_id,
            seat_ids=seat_ids,
            expires_at=expires_at,
            refreshed=refreshed,
            seats=seats,
        )

    async def release_hold(self, event_id: int, seat_ids: Iterable[int], holder_id: int) -> list[int]:
        """
        Drop the caller's holds. Returns the seat IDs put back on sale.

        A seat stays reserved if someone else holds it or a live pending
        booking includes it; booked seats are never touched.
        """
        seat_ids = sorted(set(seat_ids))
        if not seat_ids:
            return []
        now = self.clock()

        removed = await self.ledger.release(event_id, seat_ids, holder_id)

        async with self.sessions() as db:
            async with db.begin():
                seats = await seat_inventory.get_seats(db, event_id, seat_ids)
                claims, _ = await self._resolve_claims(db, event_id, seats, now)
                stale = [
                    seat for seat in seats
                    if seat.status == SeatStatus.RESERVED and seat.id not in claims
                ]
                reset = await seat_inventory.reset_stale(db, stale)

        hold_releases.inc()
        logger.info(
            "hold_released",
            event_id=event_id,
            holder_id=holder_id,
            ledger_removed=removed,
            seats_reset=reset,
        )
        return reset

    async def verify_hold(self, event_id: int, seat_ids: Iterable[int], holder_id: int) -> HoldResult:
        """
        Check that `holder_id` holds a live entry for every seat.

        Raises:
            SeatUnavailable: a seat is already booked
            HoldExpired: a seat is not (or no longer) held by the caller
        """
        seat_ids = self.normalize_selection(seat_ids)
        now = self.clock()

        async with self.sessions() as db:
            seats = await seat_inventory.get_seats(db, event_id, seat_ids)

        booked = [seat.id for seat in seats if seat.status == SeatStatus.BOOKED]
        if booked:
            raise SeatUnavailable(booked)

        live = await self.ledger.lookup(event_id, seat_ids, now)
        missing = [sid for sid in seat_ids if sid not in live or live[sid].holder_id != holder_id]
        if missing:
            raise HoldExpired(missing)

        return HoldResult(
            event_id=event_id,
            holder_id=holder_id,
            seat_ids=seat_ids,
            expires_at=min(entry.expires_at for entry in live.values()),
            seats=seats,
        )

    async def recover_booking(self, db: AsyncSession, booking: Booking, now: datetime) -> list[int]:
        """
        Cancel a pending booking whose deadline has passed, inside the
        caller's transaction. Returns payment IDs to refund after commit.
        """
        return await self._recover(db, [booking], now)

    async def settle_refunds(self, payment_ids: Sequence[int]) -> None:
        await self._settle_refunds(payment_ids)

    async def sweep_expired(self, now: Optional[datetime] = None, batch_size: int = 100) -> SweepResult:
        """
        Proactive pass: recover expired pending bookings, then reset reserved
        seats with neither a live hold nor a live pending booking.
        """
        now = now or self.clock()
        result = SweepResult()

        async with self.sessions() as db:
            async with db.begin():
                expired = await booking_repository.expired_pending(db, now, limit=batch_size)
                refunds = await self._recover(db, expired, now)
                result.bookings_recovered = [booking.id for booking in expired]
        await self._settle_refunds(refunds)

        async with self.sessions() as db:
            async with db.begin():
                rows = await db.execute(
                    select(Seat)
                    .where(Seat.status == SeatStatus.RESERVED)
                    .order_by(Seat.event_id, Seat.id)
                    .limit(batch_size * 10)
                )
                by_event: dict[int, list[Seat]] = {}
                for seat in rows.scalars().all():
                    by_event.setdefault(seat.event_id, []).append(seat)

                for event_id, seats in by_event.items():
                    claims, _ = await self._resolve_claims(db, event_id, seats, now)
                    stale = [seat for seat in seats if seat.id not in claims]
                    reset = await seat_inventory.reset_stale(db, stale)
                    result.seats_reset.extend(reset)

        if result.seats_reset:
            stale_holds_recovered.inc(len(result.seats_reset))
        if result.bookings_recovered or result.seats_reset:
            logger.info(
                "expiry_sweep_completed",
                bookings_recovered=len(result.bookings_recovered),
                seats_reset=len(result.seats_reset),
            )
        return result

    async def _resolve_claims(
        self, db: AsyncSession, event_id: int, seats: Sequence[Seat], now: datetime
    ) -> tuple[dict[int, int], list[Booking]]:
        """
        Work out who currently holds each seat.

        Returns ({seat_id: holder_id}, expired pending bookings found over
        stale seats).
        """
        seat_ids = [seat.id for seat in seats]
        live = await self.ledger.lookup(event_id, seat_ids, now)
        claims = {seat_id: entry.holder_id for seat_id, entry in live.items()}

        stale_ids = {
            seat.id for seat in seats
            if seat.status == SeatStatus.RESERVED and seat.id not in live
        }
        expired = []
        if stale_ids:
            for booking in await booking_repository.pending_for_seats(db, stale_ids):
                deadline = as_utc(booking.hold_expires_at)
                if deadline is not None and deadline <= now:
                    expired.append(booking)
                    continue
                for seat_id in booking.seat_ids:
                    if seat_id in stale_ids:
                        claims[seat_id] = booking.user_id
        return claims, expired

    async def _recover(self, db: AsyncSession, bookings: Sequence[Booking], now: datetime) -> list[int]:
        refunds = []
        for booking in bookings:
            outcome = await booking_repository.cancel_pending(db, booking.id, "hold_expired", now)
            if outcome is None:
                continue
            pending_bookings_recovered.inc()
            logger.warning(
                "pending_booking_recovered",
                booking_id=booking.id,
                user_id=booking.user_id,
                seat_ids=outcome.seat_ids,
                payment_status=outcome.payment_status,
            )
            if outcome.needs_refund:
                refunds.append(outcome.payment_id)
        return refunds

    async def _settle_refunds(self, payment_ids: Sequence[int]) -> None:
        for payment_id in payment_ids:
            if self.payments is None:
                logger.error("refund_not_possible", payment_id=payment_id)
                continue
            await self.payments.refund(payment_id)

    async def _heal_quietly(self, event_id: int, seat_ids: Sequence[int]) -> None:
        """Persist stale-state cleanup seen by a rejected request."""
        now = self.clock()
        try:
            async with self.sessions() as db:
                async with db.begin():
                    seats = await seat_inventory.get_seats(db, event_id, seat_ids)
                    claims, expired = await self._resolve_claims(db, event_id, seats, now)
                    refunds = await self._recover(db, expired, now)
                    seats = await seat_inventory.get_seats(db, event_id, seat_ids, refresh=True)
                    stale = [
                        seat for seat in seats
                        if seat.status == SeatStatus.RESERVED and seat.id not in claims
                    ]
                    reset = await seat_inventory.reset_stale(db, stale)
            await self._settle_refunds(refunds)
        except BookingEngineError as e:
            logger.warning("hold_heal_failed", event_id=event_id, error=e.code)
            return

        if reset:
            stale_holds_recovered.inc(len(reset))
            logger.info("stale_holds_reset", event_id=event_id, seat_ids=reset)

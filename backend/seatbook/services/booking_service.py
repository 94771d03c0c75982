"""
Booking commit orchestrator.

COMMIT STRATEGY: Pending row + compensation
===========================================

Problem:
  Turning held seats into a paid booking spans two systems (our database and
  a payment processor) that cannot share a transaction, and the processor can
  take seconds to answer. Holding a row lock across that call would serialize
  every buyer of the event behind the slowest card payment.

Solution:
  1. Validate the caller's holds (or take them, with AUTO_HOLD_ON_BOOKING)
  2. Short transaction: booking 'pending', its seats, payment 'pending'.
     Seat versions are bumped so two commits of the same seats cannot both
     create a pending booking
  3. Charge, bounded by PAYMENT_TIMEOUT_SECONDS, with no transaction open
  4. Short transaction: booking pending -> confirmed (conditional), seats
     reserved -> booked
  5. Any failure after step 2 runs compensation: payment failed (or refunded
     if it was captured), seats released, booking cancelled, ledger released

  If the process dies between 2 and 4, the booking stays 'pending' with a
  deadline (hold_expires_at). Once the deadline passes, the next access to
  those seats, or the expiry sweep, recovers it. Seats under a pending
  booking are never handed to anyone else before that.
"""

import asyncio
import time
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seatbook.core.clock import Clock, as_utc, utcnow
from seatbook.core.config import Settings, get_settings
from seatbook.core.exceptions import (
    BookingAccessDenied,
    BookingEngineError,
    BookingNotFound,
    CancellationWindowClosed,
    HoldExpired,
    InternalInconsistency,
    InvalidStateTransition,
    LedgerUnavailable,
    PaymentDeclined,
    PaymentFailed,
    SeatContended,
    SeatUnavailable,
)
from seatbook.core.logging import bind_booking_context, get_logger, unbind_booking_context
from seatbook.core.metrics import booking_latency, record_booking_attempt, record_compensation
from seatbook.models.booking import Booking, BookingStatus
from seatbook.models.seat import SeatStatus
from seatbook.services import booking_repository, seat_inventory
from seatbook.services.booking_saga import BookingSaga, SagaState
from seatbook.services.interfaces.notifier import Notifier
from seatbook.services.payment_service import PaymentIntent, PaymentService
from seatbook.services.reservation_service import ReservationCoordinator

logger = get_logger(__name__)


class BookingOrchestrator:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        coordinator: ReservationCoordinator,
        payments: PaymentService,
        notifier: Notifier,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.coordinator = coordinator
        self.payments = payments
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock
        self._background: set[asyncio.Task] = set()

    async def create_booking_with_payment(
        self,
        user_id: int,
        event_id: int,
        seat_ids: Iterable[int],
        intent: PaymentIntent,
    ) -> Booking:
        """
        Turn the caller's held seats into a confirmed, paid booking.

        Raises:
            SeatUnavailable, SeatContended, HoldExpired: seat validation failed,
                no booking row was written
            PaymentFailed (and subclasses): payment did not complete, the
                booking was cancelled and its seats released
            InternalInconsistency: seats could not be booked after payment,
                the payment was refunded and the booking cancelled
        """
        seat_ids = self.coordinator.normalize_selection(seat_ids)
        intent.validate()
        saga = BookingSaga(user_id=user_id, event_id=event_id, clock=self.clock)
        bind_booking_context(user_id=user_id, event_id=event_id)
        started = time.perf_counter()
        try:
            hold = await self._validate_holds(event_id, seat_ids, user_id)
            saga.advance(SagaState.HOLDS_VALIDATED)

            booking = await self._create_pending(user_id, event_id, seat_ids, intent, hold.expires_at)
            saga.booking_id = booking.id
            bind_booking_context(booking_id=booking.id)

            saga.advance(SagaState.PAYMENT_ATTEMPTED)
            await self._attempt_payment(saga, booking, intent)
            return await self._confirm(saga, booking)
        finally:
            booking_latency.observe(time.perf_counter() - started)
            unbind_booking_context("user_id", "event_id", "booking_id")

    async def _validate_holds(self, event_id: int, seat_ids: list[int], user_id: int):
        try:
            if self.settings.AUTO_HOLD_ON_BOOKING:
                return await self.coordinator.request_hold(event_id, seat_ids, user_id)
            return await self.coordinator.verify_hold(event_id, seat_ids, user_id)
        except (SeatUnavailable, SeatContended, HoldExpired) as e:
            record_booking_attempt(e.code)
            logger.info("booking_rejected", reason=e.code, seat_ids=e.seat_ids)
            raise

    async def _create_pending(
        self,
        user_id: int,
        event_id: int,
        seat_ids: list[int],
        intent: PaymentIntent,
        hold_expires_at,
    ) -> Booking:
        now = self.clock()
        # Never let the deadline fall inside the payment window
        minimum = now + timedelta(seconds=self.settings.PAYMENT_TIMEOUT_SECONDS * 2)
        deadline = max(hold_expires_at, minimum)

        try:
            async with self.sessions() as db:
                async with db.begin():
                    seats = await seat_inventory.get_seats(db, event_id, seat_ids)
                    booked = [seat.id for seat in seats if seat.status == SeatStatus.BOOKED]
                    if booked:
                        raise SeatUnavailable(booked)

                    in_flight = []
                    for other in await booking_repository.pending_for_seats(db, seat_ids):
                        other_deadline = as_utc(other.hold_expires_at)
                        if other_deadline is None or other_deadline > now:
                            in_flight.extend(s for s in other.seat_ids if s in seat_ids)
                    if in_flight:
                        raise SeatContended(in_flight, "Seats are already being booked")

                    await seat_inventory.reserve(db, seats)
                    booking = await booking_repository.create_pending(
                        db, user_id, event_id, seats, intent.method, deadline
                    )
        except (SeatUnavailable, SeatContended) as e:
            record_booking_attempt(e.code)
            logger.info("booking_rejected", reason=e.code, seat_ids=e.seat_ids)
            raise

        logger.info(
            "booking_pending",
            booking_id=booking.id,
            seat_ids=seat_ids,
            total_amount=str(booking.total_amount),
            method=intent.method,
        )
        return booking

    async def _attempt_payment(self, saga: BookingSaga, booking: Booking, intent: PaymentIntent) -> None:
        try:
            await asyncio.wait_for(
                self.payments.charge(
                    booking.payment.id,
                    booking.user_id,
                    booking.id,
                    booking.total_amount,
                    intent,
                ),
                timeout=self.settings.PAYMENT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            error = PaymentDeclined(
                "Payment did not complete in time", step="charge", reason="timeout"
            )
            await self._compensate(saga, booking, error)
            raise error
        except PaymentFailed as e:
            await self._compensate(saga, booking, e)
            raise
        except Exception as e:
            await self._compensate_after_crash(saga, booking, e)
            raise

    async def _confirm(self, saga: BookingSaga, booking: Booking) -> Booking:
        now = self.clock()
        try:
            async with self.sessions() as db:
                async with db.begin():
                    confirmed = await booking_repository.confirm_pending(db, booking.id, now)
                    if confirmed:
                        await seat_inventory.mark_booked(db, booking.seat_ids, booking.id)
        except InternalInconsistency as e:
            logger.error("booking_seat_mismatch", booking_id=booking.id, detail=e.detail)
            await self._compensate(saga, booking, e)
            raise
        except Exception as e:
            await self._compensate_after_crash(saga, booking, e)
            raise

        if not confirmed:
            # Recovery cancelled the booking while payment was in flight
            error = HoldExpired(booking.seat_ids, "Booking expired before payment completed")
            await self._compensate(saga, booking, error)
            raise error

        saga.advance(SagaState.CONFIRMED)
        await self._release_ledger(booking)
        self._notify(booking.user_id, booking.id)

        record_booking_attempt("confirmed")
        logger.info(
            "booking_confirmed",
            booking_id=booking.id,
            reference=booking.reference_number,
            seat_ids=booking.seat_ids,
        )
        return await self._load(booking.id)

    async def _compensate(self, saga: BookingSaga, booking: Booking, error: BookingEngineError) -> None:
        """Undo a failed commit. Safe to run after recovery already did."""
        saga.advance(SagaState.COMPENSATING)
        record_compensation(error.code)
        record_booking_attempt(error.code)
        logger.warning("booking_compensating", booking_id=booking.id, reason=error.code, message=error.message)

        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                outcome = await booking_repository.cancel_pending(db, booking.id, error.code, now)

        # A payment captured before the failure is given back exactly once
        try:
            await self.payments.refund(booking.payment.id)
        except PaymentFailed as refund_error:
            # Payment stays completed; cancelling the booking again retries the refund
            logger.error("compensation_refund_failed", booking_id=booking.id, error=refund_error.message)
        await self._release_ledger(booking)

        saga.advance(SagaState.CANCELLED)
        logger.info(
            "booking_compensated",
            booking_id=booking.id,
            cancelled_here=outcome is not None,
        )

    async def _compensate_after_crash(self, saga: BookingSaga, booking: Booking, error: Exception) -> None:
        logger.exception("booking_unexpected_error", booking_id=booking.id, error=str(error))
        try:
            await self._compensate(
                saga,
                booking,
                InternalInconsistency("Unexpected error during booking commit", error=type(error).__name__),
            )
        except Exception as compensation_error:
            # Booking stays pending; recovery picks it up after its deadline
            logger.error(
                "booking_compensation_failed",
                booking_id=booking.id,
                error=str(compensation_error),
            )

    async def _release_ledger(self, booking: Booking) -> None:
        try:
            await self.coordinator.ledger.release(booking.event_id, booking.seat_ids, booking.user_id)
        except LedgerUnavailable:
            # Entries expire by themselves; seat rows already carry the outcome
            logger.warning("ledger_release_skipped", booking_id=booking.id)

    def _notify(self, user_id: int, booking_id: int) -> None:
        task = asyncio.create_task(self._deliver_confirmation(user_id, booking_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver_confirmation(self, user_id: int, booking_id: int) -> None:
        try:
            await self.notifier.booking_confirmed(user_id, booking_id)
        except Exception as e:
            logger.warning("notification_failed", booking_id=booking_id, error=str(e))

    async def drain(self) -> None:
        """Wait for in-flight notifications."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- Reads and cancellation ---------------------------------------------

    async def cancel_booking(self, booking_id: int, user_id: int) -> Booking:
        """
        Cancel a booking and refund its payment.

        Already-cancelled bookings are returned unchanged (a refund that
        previously failed is retried). Confirmed bookings can be cancelled up
        to CANCELLATION_CUTOFF_HOURS before the event.
        """
        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                booking = await self._owned(db, booking_id, user_id)

                if booking.status == BookingStatus.PENDING:
                    if not self._deadline_passed(booking, now):
                        raise InvalidStateTransition(
                            BookingStatus.PENDING,
                            BookingStatus.CANCELLED,
                            booking_id=booking_id,
                            reason="payment in progress",
                        )
                    await self.coordinator.recover_booking(db, booking, now)

                elif booking.status == BookingStatus.CONFIRMED:
                    cutoff = timedelta(hours=self.settings.CANCELLATION_CUTOFF_HOURS)
                    if as_utc(booking.event.date) - now < cutoff:
                        raise CancellationWindowClosed(booking_id, self.settings.CANCELLATION_CUTOFF_HOURS)
                    await booking_repository.cancel_confirmed(db, booking_id, "cancelled_by_user", now)

                else:
                    logger.info("booking_already_cancelled", booking_id=booking_id)

        if booking.payment is not None:
            await self.payments.refund(booking.payment.id)

        logger.info("booking_cancelled", booking_id=booking_id, user_id=user_id)
        return await self._load(booking_id)

    async def get_booking_status(self, booking_id: int, user_id: int) -> Booking:
        """Booking with seats and payment; an abandoned pending booking is recovered first."""
        now = self.clock()
        refunds = []
        async with self.sessions() as db:
            async with db.begin():
                booking = await self._owned(db, booking_id, user_id)
                if booking.status == BookingStatus.PENDING and self._deadline_passed(booking, now):
                    refunds = await self.coordinator.recover_booking(db, booking, now)
                else:
                    return booking

        await self.coordinator.settle_refunds(refunds)
        return await self._load(booking_id)

    async def list_user_bookings(self, user_id: int) -> list[Booking]:
        async with self.sessions() as db:
            return await booking_repository.list_for_user(db, user_id)

    async def _owned(self, db: AsyncSession, booking_id: int, user_id: int) -> Booking:
        booking = await booking_repository.get_booking(db, booking_id, refresh=True)
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.user_id != user_id:
            raise BookingAccessDenied(booking_id)
        return booking

    async def _load(self, booking_id: int) -> Booking:
        async with self.sessions() as db:
            booking = await booking_repository.get_booking(db, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    @staticmethod
    def _deadline_passed(booking: Booking, now) -> bool:
        deadline = as_utc(booking.hold_expires_at)
        return deadline is not None and deadline <= now

"""
Domain errors raised by the reservation and booking engine.

Every error carries a stable machine-readable `code`, the HTTP status the API
layer maps it to, and a `detail` dict with enough context for a client to show
which seats or which payment step failed. Errors are terminal for the current
attempt; the engine never retries them on the caller's behalf.
"""

from typing import Any, Iterable, Optional

from fastapi import status


class BookingEngineError(Exception):
    """Base exception for all reservation/booking errors."""

    code = "booking_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "detail": self.detail}


def _ids(seat_ids: Iterable[int]) -> list[int]:
    return sorted(set(seat_ids))


# --- Seat level -------------------------------------------------------------

class SeatUnavailable(BookingEngineError):
    """One or more seats are already booked."""

    code = "seat_unavailable"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, seat_ids: Iterable[int], message: Optional[str] = None):
        seat_ids = _ids(seat_ids)
        super().__init__(message or f"Seats {seat_ids} are already booked", seat_ids=seat_ids)
        self.seat_ids = seat_ids


class SeatContended(BookingEngineError):
    """One or more seats are held by somebody else right now."""

    code = "seat_contended"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, seat_ids: Iterable[int], message: Optional[str] = None):
        seat_ids = _ids(seat_ids)
        super().__init__(
            message or f"Seats {seat_ids} are temporarily held by another user",
            seat_ids=seat_ids,
        )
        self.seat_ids = seat_ids


class HoldExpired(BookingEngineError):
    """The caller no longer holds the seats it is trying to book."""

    code = "hold_expired"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, seat_ids: Iterable[int], message: Optional[str] = None):
        seat_ids = _ids(seat_ids)
        super().__init__(message or f"Hold on seats {seat_ids} has expired", seat_ids=seat_ids)
        self.seat_ids = seat_ids


class SeatNotFound(BookingEngineError):
    code = "seat_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, event_id: int, seat_ids: Iterable[int]):
        seat_ids = _ids(seat_ids)
        super().__init__(
            f"Seats {seat_ids} do not exist for event {event_id}",
            event_id=event_id,
            seat_ids=seat_ids,
        )
        self.seat_ids = seat_ids


class InvalidSeatSelection(BookingEngineError):
    code = "invalid_seat_selection"


# --- Event / booking level --------------------------------------------------

class EventNotOpen(BookingEngineError):
    code = "event_not_open"

    def __init__(self, event_id: int, message: Optional[str] = None):
        super().__init__(message or f"Event {event_id} is not open for booking", event_id=event_id)


class EventNotFound(BookingEngineError):
    code = "event_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, event_id: int):
        super().__init__(f"Event {event_id} not found", event_id=event_id)


class BookingNotFound(BookingEngineError):
    code = "booking_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} not found", booking_id=booking_id)


class BookingAccessDenied(BookingEngineError):
    code = "booking_access_denied"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, booking_id: int):
        super().__init__("Access denied", booking_id=booking_id)


class CancellationWindowClosed(BookingEngineError):
    code = "cancellation_window_closed"

    def __init__(self, booking_id: int, cutoff_hours: int):
        super().__init__(
            f"Cannot cancel booking less than {cutoff_hours} hours before event",
            booking_id=booking_id,
            cutoff_hours=cutoff_hours,
        )


class InvalidStateTransition(BookingEngineError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, from_state: str, to_state: str, **detail: Any):
        super().__init__(
            f"Illegal state transition attempted: {from_state} -> {to_state}",
            from_state=from_state,
            to_state=to_state,
            **detail,
        )


class InternalInconsistency(BookingEngineError):
    """Durable seat state and the booking/ledger view disagree."""

    code = "internal_inconsistency"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# --- Payment level ----------------------------------------------------------

class PaymentFailed(BookingEngineError):
    """Base for every payment-step failure. `step` names the failing step."""

    code = "payment_failed"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, message: str, step: str = "charge", **detail: Any):
        super().__init__(message, step=step, **detail)
        self.step = step


class InsufficientBalance(PaymentFailed):
    code = "insufficient_balance"

    def __init__(self, balance, required):
        super().__init__(
            f"Insufficient wallet balance. You have {balance} but the booking costs {required}.",
            step="wallet_debit",
            balance=str(balance),
            required=str(required),
        )


class PaymentDeclined(PaymentFailed):
    code = "payment_declined"


class PaymentVerificationFailed(PaymentFailed):
    code = "payment_verification_failed"

    def __init__(
        self,
        message: str = "Payment signature verification failed",
        step: str = "verify_signature",
        **detail: Any,
    ):
        super().__init__(message, step=step, **detail)


class InvalidPaymentRequest(BookingEngineError):
    code = "invalid_payment_request"


class PaymentNotFound(BookingEngineError):
    code = "payment_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} not found", payment_id=payment_id)


class UserNotFound(BookingEngineError):
    code = "user_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found", user_id=user_id)


# --- Infrastructure ---------------------------------------------------------

class LedgerUnavailable(BookingEngineError):
    code = "ledger_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

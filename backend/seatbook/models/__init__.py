from seatbook.models.user import User
from seatbook.models.event import Event
from seatbook.models.seat import Seat, SeatStatus
from seatbook.models.booking import Booking, BookingSeat, BookingStatus
from seatbook.models.payment import (
    Payment, PaymentMethod, PaymentOrder, PaymentOrderStatus, PaymentStatus,
)
from seatbook.models.wallet_transaction import WalletTransaction, TransactionType

__all__ = [
    "User", "Event", "Seat", "SeatStatus",
    "Booking", "BookingSeat", "BookingStatus",
    "Payment", "PaymentMethod", "PaymentStatus", "PaymentOrder", "PaymentOrderStatus",
    "WalletTransaction", "TransactionType",
]

from seatbook.schemas.hold import HoldRequest, HoldResponse, HoldReleaseResponse, SeatResponse
from seatbook.schemas.booking import BookingCreate, BookingResponse, PaymentDetails
from seatbook.schemas.wallet import WalletBalanceResponse, WalletTopUpRequest, WalletTransactionResponse
from seatbook.schemas.payment import PaymentOrderCreate, PaymentOrderResponse, WebhookResponse

__all__ = [
    "HoldRequest", "HoldResponse", "HoldReleaseResponse", "SeatResponse",
    "BookingCreate", "BookingResponse", "PaymentDetails",
    "WalletBalanceResponse", "WalletTopUpRequest", "WalletTransactionResponse",
    "PaymentOrderCreate", "PaymentOrderResponse", "WebhookResponse",
]

"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .ledger import Reservation, ReservationLedger
from .notifier import Notifier
from .payment_gateway import GatewayError, GatewayOrder, GatewayRefund, PaymentGateway

__all__ = [
    'Reservation', 'ReservationLedger', 'Notifier',
    'GatewayError', 'GatewayOrder', 'GatewayRefund', 'PaymentGateway',
]

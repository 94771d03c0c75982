"""
Card payment gateway interface (third-party processor).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount: Decimal
    currency: str
    receipt: Optional[str] = None
    status: str = "created"


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    payment_id: str
    amount: Decimal
    status: str = "processed"
    raw: dict = field(default_factory=dict)


class GatewayError(Exception):
    """Any failure talking to the card processor."""


class PaymentGateway(ABC):
    """
    Interface for card processors.

    Implementations:
    - RazorpayGateway: real processor over HTTPS
    - MockPaymentGateway: local development, no network

    The booking engine treats any GatewayError, and any failed signature
    check, as a failed payment.
    """

    @abstractmethod
    async def create_order(
        self, amount: Decimal, currency: str, receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        pass

    @abstractmethod
    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        pass

    @abstractmethod
    async def refund(self, provider_transaction_id: str, amount: Decimal) -> GatewayRefund:
        pass

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        pass

    async def close(self) -> None:
        """Release network resources, if any."""

"""
Card processor clients.

Amounts cross this boundary as Decimal rupees and are converted to integer
paise on the wire, which is what the processor API expects.
"""

import hashlib
import hmac
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import httpx

from seatbook.core.logging import get_logger
from seatbook.services.interfaces.payment_gateway import (
    GatewayError,
    GatewayOrder,
    GatewayRefund,
    PaymentGateway,
)

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Decimal:
    return (Decimal(int(value)) / 100).quantize(Decimal("0.01"))


def hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def checkout_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Signature the checkout widget returns for a captured payment."""
    return hmac_sha256(secret, f"{order_id}|{payment_id}".encode())


class RazorpayGateway(PaymentGateway):
    """
    Razorpay REST client over httpx.

    Use when:
    - Real card payments are taken (PAYMENT_GATEWAY=razorpay)
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: Optional[str] = None,
        api_url: str = "https://api.razorpay.com/v1",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._http().post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "gateway_request_rejected",
                path=path,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise GatewayError(f"Gateway rejected request ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            logger.error("gateway_request_failed", path=path, error=str(e))
            raise GatewayError(f"Gateway request failed: {e}") from e

    async def create_order(
        self, amount: Decimal, currency: str, receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        data = await self._post(
            "/orders",
            {
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": receipt or f"receipt_{uuid.uuid4().hex[:12]}",
                "notes": notes or {},
                "payment_capture": 1,
            },
        )
        logger.info("gateway_order_created", order_id=data.get("id"), amount=str(amount))
        return GatewayOrder(
            order_id=data["id"],
            amount=from_minor_units(data["amount"]),
            currency=data.get("currency", currency),
            receipt=data.get("receipt"),
            status=data.get("status", "created"),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = checkout_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature or "")

    async def refund(self, provider_transaction_id: str, amount: Decimal) -> GatewayRefund:
        data = await self._post(
            f"/payments/{provider_transaction_id}/refund",
            {"amount": to_minor_units(amount), "speed": "normal"},
        )
        logger.info("gateway_refund_created", refund_id=data.get("id"), payment_id=provider_transaction_id)
        return GatewayRefund(
            refund_id=data["id"],
            payment_id=data.get("payment_id", provider_transaction_id),
            amount=from_minor_units(data.get("amount", to_minor_units(amount))),
            status=data.get("status", "processed"),
            raw=data,
        )

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            logger.warning("webhook_signature_unchecked")
            return True
        if not signature:
            return False
        return hmac.compare_digest(hmac_sha256(self.webhook_secret, body), signature)


class MockPaymentGateway(PaymentGateway):
    """
    In-process gateway for development and tests.

    Any order, payment or signature containing "mock" passes verification, as
    the development checkout produces those. Otherwise signatures are checked
    against `secret` exactly as the real processor would.
    """

    def __init__(self, secret: str = "mock_secret", webhook_secret: Optional[str] = None):
        self.secret = secret
        self.webhook_secret = webhook_secret
        self.orders: dict[str, GatewayOrder] = {}
        self.refunds: list[GatewayRefund] = []

    def sign(self, order_id: str, payment_id: str) -> str:
        return checkout_signature(self.secret, order_id, payment_id)

    async def create_order(
        self, amount: Decimal, currency: str, receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        order = GatewayOrder(
            order_id=f"order_mock_{uuid.uuid4().hex[:14]}",
            amount=Decimal(amount),
            currency=currency,
            receipt=receipt or f"receipt_mock_{uuid.uuid4().hex[:8]}",
        )
        self.orders[order.order_id] = order
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if any("mock" in (value or "") for value in (order_id, payment_id, signature)):
            return True
        return hmac.compare_digest(self.sign(order_id, payment_id), signature or "")

    async def refund(self, provider_transaction_id: str, amount: Decimal) -> GatewayRefund:
        refund = GatewayRefund(
            refund_id=f"rfnd_mock_{uuid.uuid4().hex[:14]}",
            payment_id=provider_transaction_id,
            amount=Decimal(amount),
        )
        self.refunds.append(refund)
        return refund

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            return True
        return hmac.compare_digest(hmac_sha256(self.webhook_secret, body), signature or "")

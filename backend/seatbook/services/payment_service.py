"""
Payment adapter: wallet debits, card capture, refunds and wallet top-ups.

MONEY SAFETY
============

Wallet debit:
  UPDATE users SET wallet_balance = wallet_balance - :amt
  WHERE id = :uid AND wallet_balance >= :amt

  One statement, so two concurrent debits can never both spend the same
  balance. Zero rows means insufficient funds (or no such user) and nothing
  was written.

Refund:
  UPDATE payments SET status = 'refunded' WHERE id = :id AND status = 'completed'

  Only the caller that wins this transition credits the wallet or calls the
  card processor, so cancelling twice, or compensation racing recovery,
  refunds at most once.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seatbook.core.clock import Clock, utcnow
from seatbook.core.config import Settings, get_settings
from seatbook.core.exceptions import (
    InsufficientBalance,
    InvalidPaymentRequest,
    PaymentDeclined,
    PaymentNotFound,
    PaymentVerificationFailed,
    UserNotFound,
)
from seatbook.core.logging import get_logger
from seatbook.core.metrics import record_payment
from seatbook.models.booking import Booking
from seatbook.models.payment import (
    Payment, PaymentMethod, PaymentOrder, PaymentOrderStatus, PaymentStatus,
)
from seatbook.models.user import User
from seatbook.models.wallet_transaction import TransactionType, WalletTransaction
from seatbook.services.interfaces.payment_gateway import GatewayError, GatewayOrder, PaymentGateway

logger = get_logger(__name__)

CENT = Decimal("0.01")


def to_cents(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PaymentIntent:
    """How the client wants to pay. Card intents carry the checkout proof."""

    method: str
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None

    def validate(self) -> None:
        if self.method not in (PaymentMethod.WALLET, PaymentMethod.CARD):
            raise InvalidPaymentRequest(f"Unsupported payment method: {self.method}", method=self.method)
        if self.method == PaymentMethod.CARD and not (self.order_id and self.payment_id and self.signature):
            raise InvalidPaymentRequest(
                "Card payments require order_id, payment_id and signature",
                method=self.method,
            )


class PaymentService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.clock = clock

    # --- Booking payments ----------------------------------------------------

    async def charge(
        self,
        payment_id: int,
        user_id: int,
        booking_id: int,
        amount: Decimal,
        intent: PaymentIntent,
    ) -> Payment:
        """
        Take payment for a pending booking.

        Raises:
            InsufficientBalance: wallet cannot cover the amount
            PaymentVerificationFailed: card proof does not verify
            PaymentDeclined: processor error, or the payment is no longer pending
        """
        intent.validate()
        try:
            if intent.method == PaymentMethod.WALLET:
                payment = await self._debit_wallet(payment_id, user_id, booking_id, amount)
            else:
                payment = await self._capture_card(payment_id, user_id, amount, intent)
        except Exception:
            record_payment(intent.method, "failed")
            raise

        record_payment(intent.method, "completed")
        logger.info(
            "payment_completed",
            payment_id=payment_id,
            booking_id=booking_id,
            method=intent.method,
            amount=str(amount),
        )
        return payment

    async def _debit_wallet(
        self, payment_id: int, user_id: int, booking_id: int, amount: Decimal
    ) -> Payment:
        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                result = await db.execute(
                    update(User)
                    .where(User.id == user_id, User.wallet_balance >= amount)
                    .values(wallet_balance=User.wallet_balance - amount)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    user = await db.get(User, user_id)
                    if user is None:
                        raise UserNotFound(user_id)
                    raise InsufficientBalance(user.wallet_balance, amount)

                txn = WalletTransaction(
                    user_id=user_id,
                    type=TransactionType.DEBIT,
                    amount=amount,
                    description=f"Payment for booking #{booking_id}",
                    booking_id=booking_id,
                )
                db.add(txn)
                await db.flush()

                # Raising here rolls the debit back
                return await self._complete(
                    db, payment_id, now, step="wallet_debit",
                    provider_transaction_id=f"wallet_txn_{txn.id}",
                )

    async def _capture_card(
        self, payment_id: int, user_id: int, amount: Decimal, intent: PaymentIntent
    ) -> Payment:
        try:
            valid = self.gateway.verify_signature(intent.order_id, intent.payment_id, intent.signature)
        except GatewayError as e:
            raise PaymentDeclined(str(e), step="verify_signature") from e
        if not valid:
            logger.warning("card_signature_invalid", payment_id=payment_id, order_id=intent.order_id)
            raise PaymentVerificationFailed(order_id=intent.order_id)

        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                await self._consume_order(
                    db, user_id, intent.order_id, intent.payment_id, amount, now, step="card_capture"
                )
                # Raising here puts the order back
                return await self._complete(
                    db, payment_id, now, step="card_capture",
                    provider_order_id=intent.order_id,
                    provider_transaction_id=intent.payment_id,
                )

    async def _consume_order(
        self,
        db: AsyncSession,
        user_id: int,
        order_id: str,
        provider_payment_id: str,
        amount: Optional[Decimal],
        now: datetime,
        step: str,
    ) -> PaymentOrder:
        """
        Spend a processor order on one payment.

        The order must belong to the user and, when an amount is given,
        match it to the cent. The created -> consumed transition is
        conditional, so a checkout proof settles at most one charge.
        """
        result = await db.execute(
            select(PaymentOrder)
            .where(PaymentOrder.provider_order_id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None or order.user_id != user_id:
            logger.warning("payment_order_unknown", order_id=order_id, user_id=user_id, step=step)
            raise PaymentVerificationFailed("Unknown payment order", step=step, order_id=order_id)
        if amount is not None and to_cents(order.amount) != to_cents(amount):
            logger.warning(
                "payment_order_amount_mismatch",
                order_id=order_id,
                order_amount=str(to_cents(order.amount)),
                amount=str(to_cents(amount)),
                step=step,
            )
            raise PaymentVerificationFailed(
                "Payment amount does not match the order",
                step=step,
                order_id=order_id,
                order_amount=str(to_cents(order.amount)),
                amount=str(to_cents(amount)),
            )

        used = await db.execute(
            select(PaymentOrder.id).where(PaymentOrder.provider_payment_id == provider_payment_id)
        )
        rowcount = 0
        if used.first() is None:
            result = await db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == order.id, PaymentOrder.status == PaymentOrderStatus.CREATED)
                .values(
                    status=PaymentOrderStatus.CONSUMED,
                    provider_payment_id=provider_payment_id,
                    consumed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            rowcount = result.rowcount
        if rowcount == 0:
            logger.warning("payment_order_reused", order_id=order_id, payment_id=provider_payment_id, step=step)
            raise PaymentVerificationFailed(
                "Payment has already been used", step=step, order_id=order_id, payment_id=provider_payment_id
            )
        return order

    async def _complete(self, db: AsyncSession, payment_id: int, now: datetime, step: str, **values) -> Payment:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.COMPLETED, paid_at=now, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise PaymentDeclined("Payment is no longer pending", step=step, payment_id=payment_id)
        return await self._load(db, payment_id)

    async def _load(self, db: AsyncSession, payment_id: int) -> Payment:
        result = await db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    async def refund(self, payment_id: int) -> Payment:
        """
        Refund a completed payment exactly once. Any other status is a no-op.

        Raises:
            PaymentDeclined: the card processor rejected the refund; the
                payment is left completed so the refund can be retried
        """
        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                payment = await self._load(db, payment_id)
                result = await db.execute(
                    update(Payment)
                    .where(Payment.id == payment_id, Payment.status == PaymentStatus.COMPLETED)
                    .values(status=PaymentStatus.REFUNDED, refunded_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.info("refund_skipped", payment_id=payment_id, status=payment.status)
                    return payment

                if payment.method == PaymentMethod.WALLET:
                    booking = await db.get(Booking, payment.booking_id)
                    await self._credit(
                        db,
                        booking.user_id,
                        payment.amount,
                        f"Refund for booking #{payment.booking_id}",
                        booking_id=payment.booking_id,
                    )

        if payment.method == PaymentMethod.CARD:
            await self._refund_card(payment)

        record_payment(payment.method, "refunded")
        logger.info("payment_refunded", payment_id=payment_id, method=payment.method, amount=str(payment.amount))

        async with self.sessions() as db:
            return await self._load(db, payment_id)

    async def _refund_card(self, payment: Payment) -> None:
        try:
            refund = await self.gateway.refund(payment.provider_transaction_id, payment.amount)
        except GatewayError as e:
            async with self.sessions() as db:
                async with db.begin():
                    await db.execute(
                        update(Payment)
                        .where(Payment.id == payment.id, Payment.status == PaymentStatus.REFUNDED)
                        .values(status=PaymentStatus.COMPLETED, refunded_at=None)
                        .execution_options(synchronize_session=False)
                    )
            logger.error("card_refund_failed", payment_id=payment.id, error=str(e))
            raise PaymentDeclined("Failed to process card refund", step="refund", payment_id=payment.id) from e

        async with self.sessions() as db:
            async with db.begin():
                await db.execute(
                    update(Payment)
                    .where(Payment.id == payment.id)
                    .values(refund_id=refund.refund_id)
                    .execution_options(synchronize_session=False)
                )

    async def _credit(
        self,
        db: AsyncSession,
        user_id: int,
        amount: Decimal,
        description: str,
        booking_id: Optional[int] = None,
        reference_id: Optional[str] = None,
    ) -> None:
        result = await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(wallet_balance=User.wallet_balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise UserNotFound(user_id)
        db.add(
            WalletTransaction(
                user_id=user_id,
                type=TransactionType.CREDIT,
                amount=amount,
                description=description,
                booking_id=booking_id,
                reference_id=reference_id,
            )
        )

    # --- Wallet --------------------------------------------------------------

    async def top_up_wallet(
        self,
        user_id: int,
        amount: Optional[Decimal],
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> Decimal:
        """
        Credit the wallet after a verified card payment.

        The credit is the amount recorded on the user's processor order; a
        client-claimed amount is only checked against it. Idempotent per
        processor payment id. Returns the new balance.
        """
        if amount is not None:
            amount = Decimal(amount)
            if amount <= 0:
                raise InvalidPaymentRequest("Top-up amount must be positive", amount=str(amount))
            if amount > self.settings.MAX_WALLET_TOP_UP:
                raise InvalidPaymentRequest(
                    f"Top-up amount cannot exceed {self.settings.MAX_WALLET_TOP_UP}",
                    amount=str(amount),
                )
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            raise PaymentVerificationFailed(step="wallet_top_up", order_id=order_id)

        now = self.clock()
        async with self.sessions() as db:
            async with db.begin():
                existing = await db.execute(
                    select(WalletTransaction.id).where(
                        WalletTransaction.user_id == user_id,
                        WalletTransaction.type == TransactionType.CREDIT,
                        WalletTransaction.reference_id == payment_id,
                    )
                )
                if existing.first() is not None:
                    logger.info("wallet_top_up_duplicate", user_id=user_id, reference_id=payment_id)
                else:
                    order = await self._consume_order(
                        db, user_id, order_id, payment_id, amount, now, step="wallet_top_up"
                    )
                    credited = to_cents(order.amount)
                    if credited > self.settings.MAX_WALLET_TOP_UP:
                        raise InvalidPaymentRequest(
                            f"Top-up amount cannot exceed {self.settings.MAX_WALLET_TOP_UP}",
                            amount=str(credited),
                        )
                    await self._credit(db, user_id, credited, "Wallet top-up", reference_id=payment_id)
                    logger.info(
                        "wallet_topped_up", user_id=user_id, amount=str(credited), reference_id=payment_id
                    )

                balance = await self._balance(db, user_id)
        return balance

    async def get_wallet_balance(self, user_id: int) -> Decimal:
        async with self.sessions() as db:
            return await self._balance(db, user_id)

    async def _balance(self, db: AsyncSession, user_id: int) -> Decimal:
        result = await db.execute(select(User.wallet_balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise UserNotFound(user_id)
        return Decimal(balance)

    async def get_transaction_history(self, user_id: int, limit: int = 50) -> list[WalletTransaction]:
        async with self.sessions() as db:
            result = await db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.user_id == user_id)
                .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- Processor -----------------------------------------------------------

    async def create_payment_order(
        self,
        user_id: int,
        amount: Decimal,
        currency: Optional[str] = None,
        receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> GatewayOrder:
        """Open a processor order and remember who it is for and how much."""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidPaymentRequest("Order amount must be positive", amount=str(amount))
        try:
            order = await self.gateway.create_order(
                amount, currency or self.settings.PAYMENT_CURRENCY, receipt=receipt, notes=notes
            )
        except GatewayError as e:
            raise PaymentDeclined(str(e), step="create_order") from e

        async with self.sessions() as db:
            async with db.begin():
                if await db.get(User, user_id) is None:
                    raise UserNotFound(user_id)
                db.add(
                    PaymentOrder(
                        provider_order_id=order.order_id,
                        user_id=user_id,
                        amount=to_cents(order.amount),
                        currency=order.currency,
                        receipt=receipt,
                        status=PaymentOrderStatus.CREATED,
                    )
                )
        logger.info("payment_order_created", order_id=order.order_id, user_id=user_id, amount=str(order.amount))
        return order

    async def handle_gateway_webhook(self, body: bytes, signature: Optional[str]) -> dict:
        """
        Reconcile payment rows with processor events.

        Booking state is never changed from here; only the orchestrator
        confirms or cancels bookings.
        """
        if not self.gateway.verify_webhook_signature(body, signature):
            raise PaymentVerificationFailed("Invalid webhook signature", step="webhook")
        try:
            event = json.loads(body)
            event_type = event["event"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidPaymentRequest("Malformed webhook payload") from e
        if not isinstance(event_type, str):
            raise InvalidPaymentRequest("Malformed webhook payload")

        handlers = {
            "payment.captured": ("payment", self._on_payment_captured),
            "payment.failed": ("payment", self._on_payment_failed),
            "refund.processed": ("refund", self._on_refund_processed),
        }
        if event_type in handlers:
            kind, handler = handlers[event_type]
            try:
                entity = event["payload"][kind]["entity"]
            except (KeyError, TypeError) as e:
                raise InvalidPaymentRequest(f"Webhook {event_type} has no {kind} entity") from e
            if not isinstance(entity, dict):
                raise InvalidPaymentRequest(f"Webhook {event_type} has no {kind} entity")
            async with self.sessions() as db:
                async with db.begin():
                    return await handler(db, entity)

        logger.info("webhook_event_ignored", event_type=event_type)
        return {"success": True, "message": "Webhook processed"}

    async def _on_payment_captured(self, db: AsyncSession, entity: dict) -> dict:
        known = await db.execute(select(Payment.id).where(Payment.provider_transaction_id == entity.get("id")))
        if known.first() is not None:
            logger.info("webhook_payment_captured", order_id=entity.get("order_id"), matched=0)
            return {"success": True, "message": "Payment captured successfully"}
        result = await db.execute(
            update(Payment)
            .where(
                Payment.provider_order_id == entity.get("order_id"),
                Payment.provider_transaction_id.is_(None),
            )
            .values(provider_transaction_id=entity.get("id"))
            .execution_options(synchronize_session=False)
        )
        logger.info("webhook_payment_captured", order_id=entity.get("order_id"), matched=result.rowcount)
        return {"success": True, "message": "Payment captured successfully"}

    async def _on_payment_failed(self, db: AsyncSession, entity: dict) -> dict:
        reason = entity.get("error_description") or "Payment failed at processor"
        result = await db.execute(
            update(Payment)
            .where(
                Payment.provider_order_id == entity.get("order_id"),
                Payment.status == PaymentStatus.PENDING,
            )
            .values(failure_reason=reason[:500])
            .execution_options(synchronize_session=False)
        )
        logger.info("webhook_payment_failed", order_id=entity.get("order_id"), matched=result.rowcount)
        return {"success": True, "message": "Payment failure recorded"}

    async def _on_refund_processed(self, db: AsyncSession, entity: dict) -> dict:
        now = self.clock()
        result = await db.execute(
            update(Payment)
            .where(
                Payment.provider_transaction_id == entity.get("payment_id"),
                Payment.status.in_([PaymentStatus.COMPLETED, PaymentStatus.REFUNDED]),
            )
            .values(status=PaymentStatus.REFUNDED, refund_id=entity.get("id"), refunded_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info("webhook_refund_processed", payment_id=entity.get("payment_id"), matched=result.rowcount)
        return {"success": True, "message": "Refund processed successfully"}

"""
Payment model, one row per booking.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from seatbook.db.base import Base, TimestampMixin


class PaymentMethod:
    WALLET = "wallet"
    CARD = "card"


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    method = Column(String(20), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    provider_order_id = Column(String(255), nullable=True, index=True)
    # One processor payment can settle at most one booking
    provider_transaction_id = Column(String(255), nullable=True, unique=True, index=True)
    failure_reason = Column(String(500), nullable=True)
    refund_id = Column(String(255), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking", back_populates="payment")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint("method IN ('wallet', 'card')", name="check_payment_method"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')", name="check_payment_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking={self.booking_id}, {self.method}, status={self.status})>"


class PaymentOrderStatus:
    CREATED = "created"
    CONSUMED = "consumed"


class PaymentOrder(Base, TimestampMixin):
    """
    A processor order created for a user's checkout.

    The amount is fixed when the order is created; a checkout proof is only
    accepted for the order's own amount, by the user who created it, once.
    """

    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, index=True)
    provider_order_id = Column(String(255), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    receipt = Column(String(40), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentOrderStatus.CREATED)
    provider_payment_id = Column(String(255), nullable=True, unique=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_order_amount_positive"),
        CheckConstraint("status IN ('created', 'consumed')", name="check_payment_order_status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentOrder({self.provider_order_id}, user={self.user_id}, {self.amount}, {self.status})>"

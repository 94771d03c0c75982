"""
Immutable wallet ledger: one row per debit or credit.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, CheckConstraint, DateTime, func

from seatbook.core.clock import utcnow
from seatbook.db.base import Base


class TransactionType:
    CREDIT = "credit"
    DEBIT = "debit"


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(String(255), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    reference_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_wallet_txn_amount_positive"),
        CheckConstraint("type IN ('credit', 'debit')", name="check_wallet_txn_type"),
    )

    def __repr__(self) -> str:
        return f"<WalletTransaction(id={self.id}, user={self.user_id}, {self.type} {self.amount})>"

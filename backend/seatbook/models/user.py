"""
User model. Only the wallet balance matters to the booking engine.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, Numeric, CheckConstraint

from seatbook.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    wallet_balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    __table_args__ = (
        # Last line of defence against a double debit
        CheckConstraint("wallet_balance >= 0", name="check_wallet_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"

"""
Pydantic schemas for wallet endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class WalletBalanceResponse(BaseModel):
    user_id: int
    balance: Decimal


class WalletTopUpRequest(BaseModel):
    # Optional; checked against the amount on the order
    amount: Optional[Decimal] = Field(None, gt=0)
    order_id: str
    payment_id: str
    signature: str


class WalletTransactionResponse(BaseModel):
    id: int
    type: str
    amount: Decimal
    description: str
    booking_id: Optional[int] = None
    reference_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}

"""
Pydantic schemas for card processor endpoints.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PaymentOrderCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    receipt: Optional[str] = Field(None, max_length=40)
    notes: Optional[dict[str, str]] = None


class PaymentOrderResponse(BaseModel):
    order_id: str
    amount: Decimal
    currency: str
    receipt: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}


class WebhookResponse(BaseModel):
    success: bool
    message: str

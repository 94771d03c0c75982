"""
Card processor endpoints: checkout orders and webhooks.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from seatbook.api.deps import get_current_user_id, get_payment_service
from seatbook.schemas.payment import PaymentOrderCreate, PaymentOrderResponse, WebhookResponse
from seatbook.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/orders", response_model=PaymentOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order: PaymentOrderCreate,
    user_id: int = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
):
    """Create a processor order for the client checkout widget."""
    notes = dict(order.notes or {})
    notes.setdefault("user_id", str(user_id))
    return await payments.create_payment_order(user_id, order.amount, order.currency, order.receipt, notes)


@router.post("/webhook", response_model=WebhookResponse)
async def webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
):
    """Processor callbacks. The signature covers the raw body."""
    body = await request.body()
    return await payments.handle_gateway_webhook(body, x_razorpay_signature)

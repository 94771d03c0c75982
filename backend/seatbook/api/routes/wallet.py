"""
Wallet endpoints.
"""

from fastapi import APIRouter, Depends, Query

from seatbook.api.deps import get_current_user_id, get_payment_service
from seatbook.schemas.wallet import WalletBalanceResponse, WalletTopUpRequest, WalletTransactionResponse
from seatbook.services.payment_service import PaymentService

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/", response_model=WalletBalanceResponse)
async def get_balance(
    user_id: int = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
):
    balance = await payments.get_wallet_balance(user_id)
    return WalletBalanceResponse(user_id=user_id, balance=balance)


@router.get("/transactions", response_model=list[WalletTransactionResponse])
async def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
):
    return await payments.get_transaction_history(user_id, limit=limit)


@router.post("/top-up", response_model=WalletBalanceResponse)
async def top_up(
    request: WalletTopUpRequest,
    user_id: int = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
):
    """Credit the wallet after a verified card checkout."""
    balance = await payments.top_up_wallet(
        user_id, request.amount, request.order_id, request.payment_id, request.signature
    )
    return WalletBalanceResponse(user_id=user_id, balance=balance)

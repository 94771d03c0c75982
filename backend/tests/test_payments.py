"""
Tests for the payment adapter: refunds, wallet top-ups, processor orders
and webhooks.
"""

import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from seatbook.core.exceptions import (
    InvalidPaymentRequest,
    PaymentDeclined,
    PaymentVerificationFailed,
    UserNotFound,
)
from seatbook.infrastructure.payment_gateway import (
    MockPaymentGateway,
    RazorpayGateway,
    checkout_signature,
    hmac_sha256,
    to_minor_units,
)
from seatbook.models.payment import PaymentMethod, PaymentOrder, PaymentOrderStatus, PaymentStatus
from seatbook.models.wallet_transaction import TransactionType
from seatbook.services.interfaces.payment_gateway import GatewayError
from seatbook.services.payment_service import PaymentIntent, PaymentService

SEAT_PRICE = Decimal("50.00")


async def _card_booking(orchestrator, checkout, user, event_seats, count=1):
    event_id, seat_ids = event_seats
    intent = await checkout(user, SEAT_PRICE * count, "pay_card1")
    return await orchestrator.create_booking_with_payment(user.id, event_id, seat_ids[:count], intent)


@pytest.mark.asyncio
async def test_wallet_refund_is_idempotent(orchestrator, payments, inspector, alice, event_seats):
    event_id, seat_ids = event_seats
    booking = await orchestrator.create_booking_with_payment(
        alice.id, event_id, seat_ids[:2], PaymentIntent(method=PaymentMethod.WALLET)
    )

    first = await payments.refund(booking.payment.id)
    second = await payments.refund(booking.payment.id)

    assert first.status == PaymentStatus.REFUNDED
    assert second.status == PaymentStatus.REFUNDED
    assert await inspector.balance(alice.id) == Decimal("200.00")
    types = [t.type for t in await inspector.wallet_transactions(alice.id)]
    assert types == [TransactionType.DEBIT, TransactionType.CREDIT]


@pytest.mark.asyncio
async def test_card_refund_goes_through_gateway(orchestrator, payments, gateway, checkout, alice, event_seats):
    booking = await _card_booking(orchestrator, checkout, alice, event_seats)

    refunded = await payments.refund(booking.payment.id)

    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_id == gateway.refunds[0].refund_id
    assert gateway.refunds[0].payment_id == "pay_card1"
    assert gateway.refunds[0].amount == Decimal("50.00")


@pytest.mark.asyncio
async def test_failed_card_refund_can_be_retried(
    orchestrator, payments, gateway, checkout, monkeypatch, alice, event_seats
):
    booking = await _card_booking(orchestrator, checkout, alice, event_seats)

    async def refund_down(provider_transaction_id, amount):
        raise GatewayError("refund endpoint unavailable")

    monkeypatch.setattr(gateway, "refund", refund_down)
    with pytest.raises(PaymentDeclined) as exc:
        await payments.refund(booking.payment.id)
    assert exc.value.detail["step"] == "refund"

    monkeypatch.undo()
    refunded = await payments.refund(booking.payment.id)
    assert refunded.status == PaymentStatus.REFUNDED
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_top_up_wallet(payments, gateway, inspector, alice):
    order = await payments.create_payment_order(alice.id, Decimal("150.00"))
    signature = gateway.sign(order.order_id, "pay_t1")

    balance = await payments.top_up_wallet(alice.id, Decimal("150.00"), order.order_id, "pay_t1", signature)
    again = await payments.top_up_wallet(alice.id, Decimal("150.00"), order.order_id, "pay_t1", signature)

    assert balance == Decimal("350.00")
    assert again == Decimal("350.00")
    credits = await inspector.wallet_transactions(alice.id)
    assert [(t.type, t.reference_id) for t in credits] == [(TransactionType.CREDIT, "pay_t1")]


@pytest.mark.asyncio
async def test_top_up_credits_the_order_amount(payments, gateway, inspector, alice):
    order = await payments.create_payment_order(alice.id, Decimal("1.00"))
    signature = gateway.sign(order.order_id, "pay_t4")

    with pytest.raises(PaymentVerificationFailed) as exc:
        await payments.top_up_wallet(alice.id, Decimal("99999.00"), order.order_id, "pay_t4", signature)
    assert exc.value.detail["order_amount"] == "1.00"
    assert await inspector.balance(alice.id) == Decimal("200.00")

    # Without a claimed amount the order decides
    balance = await payments.top_up_wallet(alice.id, None, order.order_id, "pay_t4", signature)
    assert balance == Decimal("201.00")
    [credit] = await inspector.wallet_transactions(alice.id)
    assert credit.amount == Decimal("1.00")


@pytest.mark.asyncio
async def test_top_up_order_spent_once(payments, gateway, inspector, alice, bob):
    order = await payments.create_payment_order(alice.id, Decimal("25.00"))
    signature = gateway.sign(order.order_id, "pay_t5")
    await payments.top_up_wallet(alice.id, None, order.order_id, "pay_t5", signature)

    # A second processor payment against the same order credits nothing
    with pytest.raises(PaymentVerificationFailed):
        await payments.top_up_wallet(
            alice.id, None, order.order_id, "pay_t6", gateway.sign(order.order_id, "pay_t6")
        )
    # Nor can another user redeem it
    with pytest.raises(PaymentVerificationFailed):
        await payments.top_up_wallet(
            bob.id, None, order.order_id, "pay_t5", signature
        )

    assert await inspector.balance(alice.id) == Decimal("225.00")
    assert await inspector.balance(bob.id) == Decimal("200.00")


@pytest.mark.asyncio
async def test_top_up_rejects_bad_requests(payments, gateway, alice):
    with pytest.raises(PaymentVerificationFailed):
        await payments.top_up_wallet(alice.id, Decimal("10"), "order_t2", "pay_t2", "forged")
    with pytest.raises(InvalidPaymentRequest):
        await payments.top_up_wallet(alice.id, Decimal("0"), "order_t2", "pay_t2", "x")
    with pytest.raises(InvalidPaymentRequest):
        await payments.top_up_wallet(alice.id, Decimal("100000.01"), "order_t2", "pay_t2", "x")
    # Correctly signed, but no such order was ever opened
    with pytest.raises(PaymentVerificationFailed):
        await payments.top_up_wallet(
            alice.id, Decimal("10"), "order_t3", "pay_t3", gateway.sign("order_t3", "pay_t3")
        )


@pytest.mark.asyncio
async def test_top_up_over_limit_order(payments, gateway, settings, inspector, alice):
    settings.MAX_WALLET_TOP_UP = Decimal("100.00")
    order = await payments.create_payment_order(alice.id, Decimal("100.01"))

    with pytest.raises(InvalidPaymentRequest):
        await payments.top_up_wallet(
            alice.id, None, order.order_id, "pay_t7", gateway.sign(order.order_id, "pay_t7")
        )
    assert await inspector.balance(alice.id) == Decimal("200.00")


@pytest.mark.asyncio
async def test_wallet_balance_and_history(payments, orchestrator, alice, event_seats):
    event_id, seat_ids = event_seats
    await orchestrator.create_booking_with_payment(
        alice.id, event_id, seat_ids[:1], PaymentIntent(method=PaymentMethod.WALLET)
    )

    assert await payments.get_wallet_balance(alice.id) == Decimal("150.00")
    history = await payments.get_transaction_history(alice.id)
    assert [t.type for t in history] == [TransactionType.DEBIT]
    with pytest.raises(UserNotFound):
        await payments.get_wallet_balance(424242)


@pytest.mark.asyncio
async def test_create_payment_order(payments, gateway, sessions, alice):
    order = await payments.create_payment_order(alice.id, Decimal("499.50"), receipt="rcpt_1")

    assert order.order_id.startswith("order_mock_")
    assert order.amount == Decimal("499.50")
    assert order.currency == "INR"
    assert gateway.orders[order.order_id].receipt == "rcpt_1"

    async with sessions() as db:
        result = await db.execute(select(PaymentOrder).where(PaymentOrder.provider_order_id == order.order_id))
        stored = result.scalar_one()
    assert stored.user_id == alice.id
    assert stored.amount == Decimal("499.50")
    assert stored.status == PaymentOrderStatus.CREATED

    with pytest.raises(InvalidPaymentRequest):
        await payments.create_payment_order(alice.id, Decimal("0"))
    with pytest.raises(UserNotFound):
        await payments.create_payment_order(424242, Decimal("10"))


def test_minor_units():
    assert to_minor_units(Decimal("499.50")) == 49950
    assert to_minor_units(Decimal("0.005")) == 1


def test_mock_gateway_signatures():
    gateway = MockPaymentGateway(secret="s3cret")
    assert gateway.verify_signature("order_1", "pay_1", checkout_signature("s3cret", "order_1", "pay_1"))
    assert not gateway.verify_signature("order_1", "pay_1", checkout_signature("other", "order_1", "pay_1"))
    assert gateway.verify_signature("order_mock_1", "pay_1", "anything")


@pytest.mark.asyncio
async def test_webhook_refund_processed(orchestrator, payments, checkout, inspector, alice, event_seats):
    booking = await _card_booking(orchestrator, checkout, alice, event_seats)
    body = json.dumps({
        "event": "refund.processed",
        "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_card1"}}},
    }).encode()

    result = await payments.handle_gateway_webhook(body, None)

    assert result["success"] is True
    refreshed = await inspector.booking(booking.id)
    assert refreshed.payment.status == PaymentStatus.REFUNDED
    assert refreshed.payment.refund_id == "rfnd_1"
    # Processor-side refunds never touch the wallet
    assert await inspector.balance(alice.id) == Decimal("200.00")


@pytest.mark.asyncio
async def test_webhook_signature_checked(sessions, settings, clock):
    gateway = MockPaymentGateway(secret="s", webhook_secret="whsec")
    payments = PaymentService(sessions, gateway, settings, clock)
    body = json.dumps({"event": "payment.authorized", "payload": {}}).encode()

    with pytest.raises(PaymentVerificationFailed):
        await payments.handle_gateway_webhook(body, "bad")

    result = await payments.handle_gateway_webhook(body, hmac_sha256("whsec", body))
    assert result == {"success": True, "message": "Webhook processed"}


@pytest.mark.asyncio
async def test_webhook_malformed_payload(payments):
    with pytest.raises(InvalidPaymentRequest):
        await payments.handle_gateway_webhook(b"not json", None)


@pytest.mark.asyncio
async def test_webhook_event_without_entity(payments):
    for body in (
        {"event": "payment.captured"},
        {"event": "payment.captured", "payload": {"payment": {}}},
        {"event": "payment.failed", "payload": None},
        {"event": "refund.processed", "payload": {"refund": {"entity": "rfnd_1"}}},
        {"event": ["payment.captured"]},
    ):
        with pytest.raises(InvalidPaymentRequest):
            await payments.handle_gateway_webhook(json.dumps(body).encode(), None)


def _razorpay(handler) -> RazorpayGateway:
    client = httpx.AsyncClient(
        base_url="https://api.test/v1", transport=httpx.MockTransport(handler), auth=("key", "secret")
    )
    return RazorpayGateway("key", "secret", webhook_secret="whsec", api_url="https://api.test/v1", client=client)


@pytest.mark.asyncio
async def test_razorpay_order_and_refund_in_paise():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append((request.url.path, body))
        if request.url.path.endswith("/orders"):
            return httpx.Response(
                200, json={"id": "order_abc", "amount": body["amount"], "currency": "INR", "status": "created"}
            )
        return httpx.Response(200, json={"id": "rfnd_abc", "payment_id": "pay_abc", "amount": body["amount"]})

    gateway = _razorpay(handler)
    order = await gateway.create_order(Decimal("499.50"), "INR", receipt="r1")
    refund = await gateway.refund("pay_abc", Decimal("100.00"))
    await gateway.close()

    assert requests[0] == (
        "/v1/orders",
        {"amount": 49950, "currency": "INR", "receipt": "r1", "notes": {}, "payment_capture": 1},
    )
    assert order.order_id == "order_abc"
    assert order.amount == Decimal("499.50")
    assert requests[1] == ("/v1/payments/pay_abc/refund", {"amount": 10000, "speed": "normal"})
    assert refund.refund_id == "rfnd_abc"
    assert refund.amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_razorpay_errors_become_gateway_errors():
    gateway = _razorpay(lambda request: httpx.Response(400, json={"error": {"description": "bad"}}))

    with pytest.raises(GatewayError):
        await gateway.refund("pay_abc", Decimal("1.00"))
    await gateway.close()


def test_razorpay_signatures():
    gateway = RazorpayGateway("key", "secret", webhook_secret="whsec")

    assert gateway.verify_signature("order_1", "pay_1", checkout_signature("secret", "order_1", "pay_1"))
    # No mock bypass against the real processor
    assert not gateway.verify_signature("order_mock_1", "pay_1", "mock")
    assert gateway.verify_webhook_signature(b"{}", hmac_sha256("whsec", b"{}"))
    assert not gateway.verify_webhook_signature(b"{}", None)

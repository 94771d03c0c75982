"""
HTTP API tests: status codes, error bodies and the request wiring.
"""

from decimal import Decimal

import pytest

from seatbook.models.booking import BookingStatus
from seatbook.models.seat import SeatStatus


@pytest.mark.asyncio
async def test_root_and_health(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert "version" in response.json()

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["ledger"] == {"status": "connected"}


@pytest.mark.asyncio
async def test_metrics_exposed(client, headers, alice, event_seats):
    event_id, seat_ids = event_seats
    await client.post(
        "/api/v1/holds/", json={"event_id": event_id, "seat_ids": seat_ids[:1]}, headers=headers(alice)
    )

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "seat_hold_attempts_total" in response.text


@pytest.mark.asyncio
async def test_missing_user_header(client, event_seats):
    event_id, seat_ids = event_seats
    response = await client.post("/api/v1/holds/", json={"event_id": event_id, "seat_ids": seat_ids[:1]})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_hold_endpoints(client, headers, inspector, alice, bob, event_seats):
    event_id, seat_ids = event_seats
    payload = {"event_id": event_id, "seat_ids": seat_ids[:2]}

    response = await client.post("/api/v1/holds/", json=payload, headers=headers(alice))
    assert response.status_code == 201
    body = response.json()
    assert body["holder_id"] == alice.id
    assert body["seat_ids"] == seat_ids[:2]
    assert [seat["label"] for seat in body["seats"]] == ["Floor-A1", "Floor-A2"]

    response = await client.post("/api/v1/holds/", json=payload, headers=headers(bob))
    assert response.status_code == 409
    assert response.json()["error"] == "seat_contended"
    assert response.json()["detail"]["seat_ids"] == seat_ids[:2]

    response = await client.request("DELETE", "/api/v1/holds/", json=payload, headers=headers(alice))
    assert response.status_code == 200
    assert response.json()["released_seat_ids"] == seat_ids[:2]
    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.AVAILABLE] * 2


@pytest.mark.asyncio
async def test_hold_validation(client, headers, alice, event_seats):
    event_id, seat_ids = event_seats

    response = await client.post(
        "/api/v1/holds/", json={"event_id": event_id, "seat_ids": []}, headers=headers(alice)
    )
    assert response.status_code == 422

    response = await client.post(
        "/api/v1/holds/", json={"event_id": event_id, "seat_ids": seat_ids[:7]}, headers=headers(alice)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_seat_selection"

    response = await client.post(
        "/api/v1/holds/", json={"event_id": event_id, "seat_ids": [424242]}, headers=headers(alice)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_booking_lifecycle(client, headers, inspector, alice, event_seats):
    event_id, seat_ids = event_seats

    response = await client.post(
        "/api/v1/bookings/",
        json={"event_id": event_id, "seat_ids": seat_ids[:2], "payment": {"method": "wallet"}},
        headers=headers(alice),
    )
    assert response.status_code == 201
    booking = response.json()
    assert booking["status"] == BookingStatus.CONFIRMED
    assert Decimal(booking["total_amount"]) == Decimal("100.00")
    assert booking["payment"]["status"] == "completed"
    assert sorted(seat["seat_id"] for seat in booking["seats"]) == seat_ids[:2]

    response = await client.get(f"/api/v1/bookings/{booking['id']}", headers=headers(alice))
    assert response.status_code == 200
    assert response.json()["reference_number"] == booking["reference_number"]

    response = await client.get("/api/v1/bookings/", headers=headers(alice))
    assert [b["id"] for b in response.json()] == [booking["id"]]

    response = await client.delete(f"/api/v1/bookings/{booking['id']}", headers=headers(alice))
    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.CANCELLED
    assert response.json()["payment"]["status"] == "refunded"
    assert await inspector.balance(alice.id) == Decimal("200.00")


@pytest.mark.asyncio
async def test_booking_insufficient_balance(client, headers, inspector, carol, event_seats):
    event_id, seat_ids = event_seats

    response = await client.post(
        "/api/v1/bookings/",
        json={"event_id": event_id, "seat_ids": seat_ids[:1]},
        headers=headers(carol),
    )

    assert response.status_code == 402
    assert response.json()["error"] == "insufficient_balance"
    assert await inspector.statuses(seat_ids[:1]) == [SeatStatus.AVAILABLE]


@pytest.mark.asyncio
async def test_booking_of_other_user_forbidden(client, headers, alice, bob, event_seats):
    event_id, seat_ids = event_seats
    response = await client.post(
        "/api/v1/bookings/",
        json={"event_id": event_id, "seat_ids": seat_ids[:1]},
        headers=headers(alice),
    )
    booking_id = response.json()["id"]

    response = await client.get(f"/api/v1/bookings/{booking_id}", headers=headers(bob))
    assert response.status_code == 403

    response = await client.delete(f"/api/v1/bookings/{booking_id}", headers=headers(bob))
    assert response.status_code == 403

    response = await client.get("/api/v1/bookings/424242", headers=headers(alice))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_card_booking_requires_proof(client, headers, alice, event_seats):
    event_id, seat_ids = event_seats
    response = await client.post(
        "/api/v1/bookings/",
        json={"event_id": event_id, "seat_ids": seat_ids[:1], "payment": {"method": "card"}},
        headers=headers(alice),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payment_request"


@pytest.mark.asyncio
async def test_wallet_endpoints(client, headers, gateway, alice):
    response = await client.get("/api/v1/wallet/", headers=headers(alice))
    assert response.status_code == 200
    assert Decimal(response.json()["balance"]) == Decimal("200.00")

    response = await client.post("/api/v1/payments/orders", json={"amount": "25.50"}, headers=headers(alice))
    order_id = response.json()["order_id"]
    proof = {"order_id": order_id, "payment_id": "pay_w1", "signature": gateway.sign(order_id, "pay_w1")}

    # Claiming more than the order paid is refused
    response = await client.post(
        "/api/v1/wallet/top-up", json={**proof, "amount": "100000.00"}, headers=headers(alice)
    )
    assert response.status_code == 402
    assert response.json()["error"] == "payment_verification_failed"

    response = await client.post(
        "/api/v1/wallet/top-up", json={**proof, "amount": "25.50"}, headers=headers(alice)
    )
    assert response.status_code == 200
    assert Decimal(response.json()["balance"]) == Decimal("225.50")

    response = await client.post(
        "/api/v1/wallet/top-up",
        json={"amount": "10", "order_id": "order_w2", "payment_id": "pay_w2", "signature": "forged"},
        headers=headers(alice),
    )
    assert response.status_code == 402
    assert response.json()["error"] == "payment_verification_failed"

    response = await client.get("/api/v1/wallet/transactions", headers=headers(alice))
    assert [t["reference_id"] for t in response.json()] == ["pay_w1"]


@pytest.mark.asyncio
async def test_payment_order_and_webhook(client, headers, alice):
    response = await client.post(
        "/api/v1/payments/orders", json={"amount": "150.00"}, headers=headers(alice)
    )
    assert response.status_code == 201
    assert response.json()["order_id"].startswith("order_mock_")

    response = await client.post(
        "/api/v1/payments/webhook",
        content=b'{"event": "payment.captured", "payload": {}}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payment_request"

    response = await client.post(
        "/api/v1/payments/webhook",
        content=b'{"event": "payment.authorized", "payload": {}}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    response = await client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"

    response = await client.get("/health")
    assert response.headers["X-Request-ID"]
    assert response.headers["X-Response-Time"].endswith("ms")

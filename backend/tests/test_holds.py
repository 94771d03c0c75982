"""
Tests for seat holds: exclusivity, expiry, all-or-nothing grants and
reconciliation of stale reservations.
"""

from datetime import timedelta

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from sqlalchemy import update

from seatbook.core.exceptions import (
    EventNotOpen,
    HoldExpired,
    InvalidSeatSelection,
    LedgerUnavailable,
    SeatContended,
    SeatNotFound,
    SeatUnavailable,
)
from seatbook.models.event import Event
from seatbook.models.seat import Seat, SeatStatus
from seatbook.services.reservation_ledger import RedisReservationLedger
from seatbook.services.reservation_service import ReservationCoordinator


@pytest.mark.asyncio
async def test_hold_granted(coordinator, clock, inspector, alice, event_seats):
    """A fresh hold reserves the seats until now + hold duration."""
    event_id, seat_ids = event_seats

    hold = await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    assert hold.seat_ids == seat_ids[:2]
    assert hold.holder_id == alice.id
    assert hold.expires_at == clock.now + timedelta(seconds=600)
    assert hold.refreshed == []
    assert [seat.status for seat in hold.seats] == [SeatStatus.RESERVED] * 2
    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.RESERVED] * 2


@pytest.mark.asyncio
async def test_hold_is_exclusive(coordinator, alice, bob, event_seats):
    """A seat held by one user cannot be held by another."""
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, [seat_ids[0]], alice.id)

    with pytest.raises(SeatContended) as exc:
        await coordinator.request_hold(event_id, [seat_ids[0]], bob.id)

    assert exc.value.seat_ids == [seat_ids[0]]


@pytest.mark.asyncio
async def test_hold_is_all_or_nothing(coordinator, ledger, clock, inspector, alice, bob, event_seats):
    """One contended seat fails the whole request and leaves the others untouched."""
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, [seat_ids[0]], alice.id)

    with pytest.raises(SeatContended):
        await coordinator.request_hold(event_id, seat_ids[:3], bob.id)

    assert await inspector.statuses(seat_ids[1:3]) == [SeatStatus.AVAILABLE] * 2
    live = await ledger.lookup(event_id, seat_ids[:3], clock.now)
    assert set(live) == {seat_ids[0]}
    assert live[seat_ids[0]].holder_id == alice.id


@pytest.mark.asyncio
async def test_rehold_refreshes_expiry(coordinator, clock, alice, event_seats):
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    clock.advance(300)
    hold = await coordinator.request_hold(event_id, seat_ids[:3], alice.id)

    assert hold.refreshed == seat_ids[:2]
    assert hold.expires_at == clock.now + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_hold_on_booked_seat_is_unavailable(coordinator, sessions, bob, event_seats):
    event_id, seat_ids = event_seats
    async with sessions() as db:
        async with db.begin():
            await db.execute(
                update(Seat)
                .where(Seat.id == seat_ids[0])
                .values(status=SeatStatus.BOOKED, booking_id=999)
            )

    with pytest.raises(SeatUnavailable) as exc:
        await coordinator.request_hold(event_id, seat_ids[:2], bob.id)

    assert exc.value.seat_ids == [seat_ids[0]]


@pytest.mark.asyncio
async def test_hold_expires(coordinator, clock, alice, bob, event_seats):
    """After the hold duration another user can take the seats."""
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    clock.advance(599)
    with pytest.raises(SeatContended):
        await coordinator.request_hold(event_id, seat_ids[:2], bob.id)

    clock.advance(2)
    hold = await coordinator.request_hold(event_id, seat_ids[:2], bob.id)
    assert hold.holder_id == bob.id
    assert hold.refreshed == []


@pytest.mark.asyncio
async def test_release_hold(coordinator, inspector, alice, bob, event_seats):
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    released = await coordinator.release_hold(event_id, seat_ids[:2], alice.id)

    assert released == seat_ids[:2]
    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.AVAILABLE] * 2
    hold = await coordinator.request_hold(event_id, seat_ids[:2], bob.id)
    assert hold.holder_id == bob.id


@pytest.mark.asyncio
async def test_release_by_other_user_keeps_hold(coordinator, inspector, alice, bob, event_seats):
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    released = await coordinator.release_hold(event_id, seat_ids[:2], bob.id)

    assert released == []
    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.RESERVED] * 2
    with pytest.raises(SeatContended):
        await coordinator.request_hold(event_id, seat_ids[:2], bob.id)


@pytest.mark.asyncio
async def test_lost_ledger_entry_frees_seat(coordinator, redis_client, alice, bob, event_seats):
    """A reserved seat with no hold behind it counts as available."""
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    await redis_client.flushall()

    hold = await coordinator.request_hold(event_id, seat_ids[:2], bob.id)
    assert hold.holder_id == bob.id


@pytest.mark.asyncio
async def test_rejected_request_resets_stale_seats(
    coordinator, redis_client, inspector, alice, bob, event_seats
):
    """A request that fails still repairs the stale seats it looked at."""
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, [seat_ids[0]], alice.id)
    await redis_client.flushall()
    await coordinator.request_hold(event_id, [seat_ids[1]], alice.id)

    with pytest.raises(SeatContended):
        await coordinator.request_hold(event_id, seat_ids[:2], bob.id)

    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.AVAILABLE, SeatStatus.RESERVED]


@pytest.mark.asyncio
async def test_verify_hold(coordinator, clock, alice, bob, event_seats):
    event_id, seat_ids = event_seats
    granted = await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    verified = await coordinator.verify_hold(event_id, seat_ids[:2], alice.id)
    assert verified.expires_at == granted.expires_at

    with pytest.raises(HoldExpired) as exc:
        await coordinator.verify_hold(event_id, seat_ids[:3], alice.id)
    assert exc.value.seat_ids == [seat_ids[2]]

    with pytest.raises(HoldExpired):
        await coordinator.verify_hold(event_id, seat_ids[:2], bob.id)

    clock.advance(601)
    with pytest.raises(HoldExpired):
        await coordinator.verify_hold(event_id, seat_ids[:2], alice.id)


@pytest.mark.asyncio
async def test_sweep_resets_expired_holds(coordinator, clock, inspector, alice, event_seats):
    event_id, seat_ids = event_seats
    await coordinator.request_hold(event_id, seat_ids[:3], alice.id)

    result = await coordinator.sweep_expired()
    assert result.seats_reset == []

    clock.advance(601)
    result = await coordinator.sweep_expired()

    assert sorted(result.seats_reset) == seat_ids[:3]
    assert await inspector.statuses(seat_ids[:3]) == [SeatStatus.AVAILABLE] * 3


@pytest.mark.asyncio
async def test_selection_limits(coordinator, alice, event_seats):
    event_id, seat_ids = event_seats

    with pytest.raises(InvalidSeatSelection):
        await coordinator.request_hold(event_id, [], alice.id)
    with pytest.raises(InvalidSeatSelection):
        await coordinator.request_hold(event_id, seat_ids[:7], alice.id)
    with pytest.raises(SeatNotFound) as exc:
        await coordinator.request_hold(event_id, [seat_ids[0], 424242], alice.id)
    assert exc.value.seat_ids == [424242]


@pytest.mark.asyncio
async def test_duplicate_ids_collapse(coordinator, alice, event_seats):
    event_id, seat_ids = event_seats
    hold = await coordinator.request_hold(event_id, [seat_ids[1], seat_ids[0], seat_ids[1]], alice.id)
    assert hold.seat_ids == seat_ids[:2]


@pytest.mark.asyncio
async def test_closed_event_rejects_holds(coordinator, sessions, alice, event_seats):
    event_id, seat_ids = event_seats
    async with sessions() as db:
        async with db.begin():
            await db.execute(update(Event).where(Event.id == event_id).values(is_open=False))

    with pytest.raises(EventNotOpen):
        await coordinator.request_hold(event_id, seat_ids[:1], alice.id)


@pytest.mark.asyncio
async def test_started_event_rejects_holds(coordinator, clock, alice, event_seats):
    event_id, seat_ids = event_seats
    clock.advance(timedelta(days=31).total_seconds())

    with pytest.raises(EventNotOpen):
        await coordinator.request_hold(event_id, seat_ids[:1], alice.id)


@pytest.mark.asyncio
async def test_ledger_outage_fails_closed(sessions, payments, settings, clock, inspector, alice, event_seats):
    """With Redis unreachable no hold is granted and nothing is reserved."""
    event_id, seat_ids = event_seats
    server = FakeServer()
    server.connected = False
    ledger = RedisReservationLedger(FakeAsyncRedis(server=server, decode_responses=True), "test:hold")
    coordinator = ReservationCoordinator(sessions, ledger, payments, settings, clock)

    with pytest.raises(LedgerUnavailable):
        await coordinator.request_hold(event_id, seat_ids[:2], alice.id)

    assert await inspector.statuses(seat_ids[:2]) == [SeatStatus.AVAILABLE] * 2

"""
Seed an event and funded users for local runs and load tests.

    python -m seatbook.seed --rows ABCDEFGHIJ --per-row 10 --users 200

Prints the ids as environment assignments for locust:

    LOAD_EVENT_ID=1 LOAD_SEAT_IDS=1-100 LOAD_USER_IDS=1-200
"""

import argparse
import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from seatbook.core.clock import utcnow
from seatbook.core.logging import get_logger, setup_logging
from seatbook.db.session import dispose_engine, get_sessionmaker
from seatbook.models.seat import Seat
from seatbook.models.user import User
from seatbook.services.catalog_service import create_event_with_seats, grid_layout

logger = get_logger(__name__)


async def seed(rows: str, per_row: int, price: Decimal, users: int, balance: Decimal) -> dict:
    batch = uuid.uuid4().hex[:8]
    sessions = get_sessionmaker()
    async with sessions() as db:
        async with db.begin():
            event = await create_event_with_seats(
                db,
                title=f"Load Test {batch}",
                date=utcnow() + timedelta(days=30),
                seats=grid_layout("Floor", rows, per_row, price),
                venue="Load Test Arena",
            )
            accounts = [
                User(email=f"load_{batch}_{i}@test.com", username=f"load_{batch}_{i}", wallet_balance=balance)
                for i in range(users)
            ]
            db.add_all(accounts)
            await db.flush()
            result = await db.execute(select(Seat.id).where(Seat.event_id == event.id).order_by(Seat.id))
            seat_ids = list(result.scalars().all())

    user_ids = [user.id for user in accounts]
    logger.info("seed_complete", event_id=event.id, seats=len(seat_ids), users=len(user_ids))
    return {
        "LOAD_EVENT_ID": str(event.id),
        "LOAD_SEAT_IDS": f"{seat_ids[0]}-{seat_ids[-1]}",
        "LOAD_USER_IDS": f"{user_ids[0]}-{user_ids[-1]}" if user_ids else "",
    }


async def main(args: argparse.Namespace) -> None:
    setup_logging()
    try:
        env = await seed(args.rows, args.per_row, Decimal(args.price), args.users, Decimal(args.balance))
    finally:
        await dispose_engine()
    print(" ".join(f"{key}={value}" for key, value in env.items()))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed an event and funded users")
    parser.add_argument("--rows", default="A", help="row letters, one row per letter")
    parser.add_argument("--per-row", type=int, default=10)
    parser.add_argument("--price", default="50.00")
    parser.add_argument("--users", type=int, default=100)
    parser.add_argument("--balance", default="1000.00")
    asyncio.run(main(parser.parse_args()))

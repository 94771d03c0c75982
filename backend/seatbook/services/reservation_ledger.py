"""
Redis-backed reservation ledger.

LEDGER LAYOUT
=============

One key per held seat:

    {prefix}:{event_id}:{seat_id} -> {"holder_id": 42, "expires_at": "2026-..."}

Each key carries a Redis expiry equal to the remaining hold time, so an
abandoned hold disappears on its own. The `expires_at` stored in the value is
what the engine actually trusts: an entry whose `expires_at` has passed is
treated as absent even if Redis has not evicted it yet (lazy expiry).

Atomic claims:
  A multi-seat claim uses optimistic WATCH/MULTI:

  1. WATCH every seat key
  2. MGET current entries, reject if any live entry belongs to someone else
  3. MULTI, SET every key with PX expiry, EXEC

  If any watched key changes between 1 and 3, EXEC aborts with WatchError and
  the claim fails as contended. Nothing is written on failure, so a claim is
  all-or-nothing and a later contender fails immediately instead of queueing.

Failure policy:
  Unlike a cache, the ledger is not advisory, so Redis errors fail closed
  (LedgerUnavailable) rather than admitting the request.
"""

import json
from datetime import datetime
from typing import Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from seatbook.core.config import get_settings
from seatbook.core.exceptions import LedgerUnavailable, SeatContended
from seatbook.core.logging import get_logger
from seatbook.core.metrics import ledger_errors, ledger_unavailable
from seatbook.services.interfaces.ledger import Reservation, ReservationLedger

logger = get_logger(__name__)


def _encode(holder_id: int, expires_at: datetime) -> str:
    return json.dumps({"holder_id": holder_id, "expires_at": expires_at.isoformat()})


def _decode(event_id: int, seat_id: int, raw: Optional[str]) -> Optional[Reservation]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
        return Reservation(
            event_id=event_id,
            seat_id=seat_id,
            holder_id=int(data["holder_id"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
    except (ValueError, KeyError, TypeError):
        # A corrupt entry degrades to "seat looks available"
        logger.warning("ledger_entry_corrupt", event_id=event_id, seat_id=seat_id)
        return None


class RedisReservationLedger(ReservationLedger):
    """
    Shared reservation ledger on Redis.

    Use when:
    - More than one API instance serves holds for the same event
    - Holds must survive an API process restart
    """

    def __init__(self, client: redis.Redis, key_prefix: Optional[str] = None):
        self.redis = client
        self.key_prefix = key_prefix or get_settings().LEDGER_KEY_PREFIX

    def _key(self, event_id: int, seat_id: int) -> str:
        return f"{self.key_prefix}:{event_id}:{seat_id}"

    def _unavailable(self, operation: str, error: Exception) -> LedgerUnavailable:
        ledger_errors.inc()
        ledger_unavailable.set(1)
        logger.error("ledger_error", operation=operation, error=str(error))
        return LedgerUnavailable("Reservation ledger is unavailable", operation=operation)

    async def lookup(
        self, event_id: int, seat_ids: Iterable[int], now: datetime
    ) -> dict[int, Reservation]:
        seat_ids = list(seat_ids)
        if not seat_ids:
            return {}
        try:
            raw_values = await self.redis.mget([self._key(event_id, s) for s in seat_ids])
        except RedisError as e:
            raise self._unavailable("lookup", e) from e

        ledger_unavailable.set(0)
        live = {}
        for seat_id, raw in zip(seat_ids, raw_values):
            entry = _decode(event_id, seat_id, raw)
            if entry is not None and entry.is_live(now):
                live[seat_id] = entry
        return live

    async def claim(
        self,
        event_id: int,
        seat_ids: Iterable[int],
        holder_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        seat_ids = list(seat_ids)
        keys = [self._key(event_id, s) for s in seat_ids]
        ttl_ms = max(1, int((expires_at - now).total_seconds() * 1000))
        value = _encode(holder_id, expires_at)

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(*keys)
                current = await pipe.mget(keys)

                contended = []
                for seat_id, raw in zip(seat_ids, current):
                    entry = _decode(event_id, seat_id, raw)
                    if entry is not None and entry.is_live(now) and entry.holder_id != holder_id:
                        contended.append(seat_id)
                if contended:
                    raise SeatContended(contended)

                pipe.multi()
                for key in keys:
                    pipe.set(key, value, px=ttl_ms)
                await pipe.execute()
        except WatchError:
            logger.info("ledger_claim_raced", event_id=event_id, seat_ids=seat_ids, holder_id=holder_id)
            raise SeatContended(seat_ids)
        except RedisError as e:
            raise self._unavailable("claim", e) from e

        ledger_unavailable.set(0)
        logger.debug("ledger_claimed", event_id=event_id, seat_ids=seat_ids, holder_id=holder_id, ttl_ms=ttl_ms)

    async def release(
        self, event_id: int, seat_ids: Iterable[int], holder_id: Optional[int] = None
    ) -> list[int]:
        seat_ids = list(seat_ids)
        if not seat_ids:
            return []
        keys = [self._key(event_id, s) for s in seat_ids]

        try:
            if holder_id is None:
                await self.redis.delete(*keys)
                return seat_ids

            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(*keys)
                current = await pipe.mget(keys)
                owned = []
                for seat_id, key, raw in zip(seat_ids, keys, current):
                    entry = _decode(event_id, seat_id, raw)
                    if entry is not None and entry.holder_id == holder_id:
                        owned.append((seat_id, key))
                if not owned:
                    return []
                pipe.multi()
                pipe.delete(*[key for _, key in owned])
                await pipe.execute()
                return [seat_id for seat_id, _ in owned]
        except WatchError:
            # Someone re-claimed a seat while we were releasing; their entry wins
            logger.info("ledger_release_raced", event_id=event_id, seat_ids=seat_ids, holder_id=holder_id)
            return []
        except RedisError as e:
            raise self._unavailable("release", e) from e

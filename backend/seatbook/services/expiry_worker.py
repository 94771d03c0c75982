"""
Background sweep that recovers abandoned pending bookings and stale holds.

Expiry is already enforced lazily on every access; the sweep only keeps
seat listings tidy between accesses.
"""

import asyncio
from typing import Optional

from seatbook.core.logging import get_logger
from seatbook.services.reservation_service import ReservationCoordinator

logger = get_logger(__name__)


class ExpiryWorker:
    def __init__(self, coordinator: ReservationCoordinator, interval_seconds: float):
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self.running:
            logger.warning("expiry_worker_already_running")
            return
        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("expiry_worker_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("expiry_worker_stopped")

    async def run_once(self):
        return await self.coordinator.sweep_expired()

    async def _run(self) -> None:
        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                # The next tick retries; lazy expiry keeps correctness meanwhile
                logger.error("expiry_sweep_failed", error=str(e))
            await asyncio.sleep(self.interval_seconds)

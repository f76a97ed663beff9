import asyncio
import logging
from typing import Optional

from app.core.config import RESERVATION_SWEEP_INTERVAL
from app.services import inventory_service

log = logging.getLogger(__name__)


class ReservationSweeper:
    """Periodically settles reservations whose lease ran out, returning their stock."""

    def __init__(self, interval: float = RESERVATION_SWEEP_INTERVAL):
        self.interval = interval
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="reservation-sweeper")
        log.info(f"Reservation sweeper started (interval={self.interval}s)")

    async def stop(self):
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        log.info("Reservation sweeper stopped")

    async def sweep_once(self) -> int:
        expired = await inventory_service.expire_stale_reservations()
        if expired:
            log.info(f"Reservation sweep expired {expired} lease(s)")
        return expired

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception:
                log.exception("Reservation sweep failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), self.interval)
            except asyncio.TimeoutError:
                pass

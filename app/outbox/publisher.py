"""
Outbox Publisher

Background loop that moves one service's outbox rows to the broker:

    claim oldest unpublished rows -> dead-letter the exhausted ones
    -> publish the rest -> record the outcome -> sleep -> repeat

Delivery is at-least-once. A row is marked published only after the broker
confirmed it, so a crash between the two republishes it on the next cycle and
consumers absorb the duplicate through their idempotency checks.
"""

import asyncio
import logging
from typing import Optional

from app.broker.client import BrokerClient
from app.core.config import (
    BATCH_SIZE,
    OUTBOX_MAX_RETRIES,
    OUTBOX_STARTUP_DELAY,
    POLLING_INTERVAL,
    PUBLISH_TIMEOUT,
)
from app.core.db import atomic
from app.events.routing import resolve_destination
from app.models.outbox import OutboxRecord
from app.outbox.dead_letter import DeadLetterStore
from app.outbox.store import OutboxStore

log = logging.getLogger(__name__)


class OutboxPublisher:
    def __init__(
        self,
        service: str,
        broker: BrokerClient,
        *,
        store: Optional[OutboxStore] = None,
        dead_letters: Optional[DeadLetterStore] = None,
        poll_interval: float = POLLING_INTERVAL,
        batch_size: int = BATCH_SIZE,
        max_retries: int = OUTBOX_MAX_RETRIES,
        publish_timeout: float = PUBLISH_TIMEOUT,
        startup_delay: float = OUTBOX_STARTUP_DELAY,
    ):
        self.service = service
        self.broker = broker
        self.store = store or OutboxStore(service)
        self.dead_letters = dead_letters or DeadLetterStore()
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.publish_timeout = publish_timeout
        self.startup_delay = startup_delay

        # Cancellation token, checked at every iteration boundary
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the publisher loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"outbox-publisher-{self.service}")
        log.info(
            f"Outbox publisher started for '{self.service}' (batch_size={self.batch_size}, "
            f"poll_interval={self.poll_interval}s, max_retries={self.max_retries}, "
            f"publish_timeout={self.publish_timeout}s)"
        )

    async def stop(self, drain: bool = True):
        """
        Stops the loop at its next iteration boundary, then runs one final
        drain pass so records written just before shutdown are not left behind.
        """
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None

        if drain:
            try:
                drained = await self.run_cycle()
                log.info(f"Outbox publisher '{self.service}' final drain published {drained} record(s)")
            except Exception:
                log.exception(f"Outbox publisher '{self.service}' final drain failed")
        try:
            await self.store.release_claims()
        except Exception:
            log.exception(f"Outbox publisher '{self.service}' could not release its claims")
        log.info(f"Outbox publisher stopped for '{self.service}'")

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleeps up to `timeout`; returns True as soon as a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self):
        """Main polling loop."""
        if self.startup_delay and await self._wait_for_stop(self.startup_delay):
            return

        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                # Store access failed: abandon this cycle, the next tick retries
                log.exception(f"Outbox publisher '{self.service}' cycle aborted")

            if await self._wait_for_stop(self.poll_interval):
                break

    async def run_cycle(self) -> int:
        """
        Processes one batch. Returns the number of records published.

        A publish failure is recorded on the row and retried next cycle. A store
        failure propagates and aborts the rest of the batch.
        """
        records = await self.store.claim_batch(self.batch_size)
        if not records:
            return 0

        published = failed = dead_lettered = lost = 0
        for record in records:
            destination = resolve_destination(record.event_type)

            # The lease must outlast one bounded publish attempt
            if not await self.store.renew_claim(record, lease_seconds=self.publish_timeout * 2):
                lost += 1
                continue

            if record.retry_count >= self.max_retries:
                if await self._dead_letter(record, destination):
                    dead_lettered += 1
                continue

            try:
                await asyncio.wait_for(
                    self.broker.publish(
                        record.payload,
                        destination,
                        message_id=str(record.id),
                        event_type=record.event_type,
                        correlation_id=record.correlation_id,
                    ),
                    timeout=self.publish_timeout,
                )
            except Exception as e:
                reason = e if str(e) else f"{e.__class__.__name__} while publishing"
                if await self.store.mark_failed(record, reason):
                    failed += 1
                log.warning(
                    f"Publish failed for {record.event_type} {record.id} to '{destination}' "
                    f"(attempt {record.retry_count}/{self.max_retries}): {reason}"
                )
                continue

            if await self.store.mark_published(record):
                published += 1

        log.info(
            f"Outbox '{self.service}' cycle: {published} published, {failed} failed, "
            f"{dead_lettered} dead-lettered"
            + (f", {lost} lost to another instance" if lost else "")
        )
        return published

    async def _dead_letter(self, record: OutboxRecord, destination: str) -> bool:
        # Dead-letter entry and the terminal mark commit together
        async with atomic() as conn:
            if not await self.store.mark_published(record, conn=conn):
                return False
            await self.dead_letters.record_outbox_exhausted(record, destination, conn=conn)
        return True

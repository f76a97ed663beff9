"""
Background runtime of one process: the broker connection, an outbox publisher
per hosted service, the event consumers of those services, and the inventory
lease sweeper.

An unreachable broker at startup is not fatal. Publishers and the sweeper
start anyway (each publish reconnects on its own), and consumer registration
keeps retrying in the background until the broker is back.

Shutdown order matters: consumers stop taking messages first, then each
publisher stops and drains its outbox one last time, and only then is the
broker connection closed.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Set

from app.broker.client import BrokerClient
from app.consumers.base import EventConsumer
from app.consumers.registry import build_consumers
from app.core.config import CONSUMER_ATTACH_RETRY_INTERVAL, SERVICES
from app.core.errors import BrokerUnavailableError
from app.outbox.dead_letter import DeadLetterStore
from app.outbox.publisher import OutboxPublisher
from app.workers.reservation_sweeper import ReservationSweeper

log = logging.getLogger(__name__)


class ServiceRuntime:
    def __init__(
        self,
        services: Iterable[str] = SERVICES,
        broker: Optional[BrokerClient] = None,
        dead_letters: Optional[DeadLetterStore] = None,
        attach_retry_interval: float = CONSUMER_ATTACH_RETRY_INTERVAL,
    ):
        self.services = list(services)
        self.broker = broker or BrokerClient()
        self.dead_letters = dead_letters or DeadLetterStore()
        self.attach_retry_interval = attach_retry_interval
        self.publishers: List[OutboxPublisher] = [
            OutboxPublisher(service, self.broker, dead_letters=self.dead_letters) for service in self.services
        ]
        self.consumers: List[EventConsumer] = build_consumers(self.services, self.dead_letters)
        self.sweeper: Optional[ReservationSweeper] = ReservationSweeper() if "inventory" in self.services else None
        self._attached: Set[str] = set()
        self._attach_task: Optional[asyncio.Task] = None

    @property
    def consumers_attached(self) -> bool:
        return len(self._attached) == len(self.consumers)

    async def start(self):
        log.info(f"Starting runtime for services: {', '.join(self.services)}")
        try:
            await self.broker.connect()
            await self._attach_consumers()
        except BrokerUnavailableError as e:
            log.error(f"Broker unavailable at startup, consumers will attach once it is back: {e}")
            self._attach_task = asyncio.create_task(self._attach_in_background(), name="consumer-attach")

        for publisher in self.publishers:
            await publisher.start()
        if self.sweeper:
            await self.sweeper.start()

    async def _attach_consumers(self):
        for consumer in self.consumers:
            if consumer.queue in self._attached:
                continue
            await consumer.start(self.broker)
            self._attached.add(consumer.queue)

    async def _attach_in_background(self):
        while not self.consumers_attached:
            await asyncio.sleep(self.attach_retry_interval)
            try:
                await self.broker.connect()
                await self._attach_consumers()
            except Exception as e:
                log.warning(
                    f"Consumer registration failed ({len(self._attached)}/{len(self.consumers)} attached), "
                    f"retrying in {self.attach_retry_interval}s: {e}"
                )
        log.info("All consumers attached")

    async def stop(self):
        log.info("Stopping runtime")
        if self._attach_task:
            self._attach_task.cancel()
            try:
                await self._attach_task
            except asyncio.CancelledError:
                pass
            self._attach_task = None
        await self.broker.cancel_consumers()
        self._attached.clear()
        if self.sweeper:
            await self.sweeper.stop()
        # No final drain while the broker is down
        drain = self.broker.is_connected
        for publisher in self.publishers:
            await publisher.stop(drain=drain)
        await self.broker.close()

    def health(self) -> dict:
        return {
            "broker_connected": self.broker.is_connected,
            "consumers_attached": self.consumers_attached,
            "publishers": {p.service: p.is_running for p in self.publishers},
            "consumers": [c.queue for c in self.consumers],
        }

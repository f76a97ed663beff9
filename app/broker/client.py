"""
Broker Client: the one owner of the process-wide RabbitMQ connection.

Topology: a durable direct exchange; each destination is a routing key on it.
Every service subscribed to a destination owns a durable queue bound with that
routing key (see app.events.routing), and the publish path declares those
queues itself so a message is held even before its consumers first start.

Nothing outside this class touches the aio-pika connection or channel.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPConnectionError

from app.core.clock import utcnow
from app.core.config import (
    BROKER_CONNECT_BASE_DELAY,
    BROKER_CONNECT_MAX_ATTEMPTS,
    BROKER_CONNECT_MAX_DELAY,
    CONSUMER_PREFETCH,
    RABBITMQ_EXCHANGE,
    RABBITMQ_HOST,
    RABBITMQ_PASSWORD,
    RABBITMQ_PORT,
    RABBITMQ_USER,
    RABBITMQ_VHOST,
)
from app.core.errors import BrokerUnavailableError
from app.core.retry import compute_backoff_seconds
from app.events.contracts import IntegrationEvent, serialize_event
from app.events.routing import subscriber_queues

log = logging.getLogger(__name__)

MessageCallback = Callable[[AbstractIncomingMessage], Awaitable[None]]

CONNECT_ERRORS = (AMQPConnectionError, OSError, asyncio.TimeoutError)


def build_url(
    host: str = RABBITMQ_HOST,
    port: int = RABBITMQ_PORT,
    user: str = RABBITMQ_USER,
    password: str = RABBITMQ_PASSWORD,
    vhost: str = RABBITMQ_VHOST,
) -> str:
    vhost_part = "" if vhost == "/" else vhost.lstrip("/")
    return f"amqp://{user}:{password}@{host}:{port}/{vhost_part}"


def encode_body(event: Any) -> bytes:
    if isinstance(event, IntegrationEvent):
        return serialize_event(event).encode("utf-8")
    if isinstance(event, bytes):
        return event
    if isinstance(event, str):
        return event.encode("utf-8")
    return json.dumps(event, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


class BrokerClient:
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        exchange_name: str = RABBITMQ_EXCHANGE,
        max_attempts: int = BROKER_CONNECT_MAX_ATTEMPTS,
        base_delay: float = BROKER_CONNECT_BASE_DELAY,
        max_delay: float = BROKER_CONNECT_MAX_DELAY,
        prefetch_count: int = CONSUMER_PREFETCH,
    ):
        self.url = url or build_url()
        self.exchange_name = exchange_name
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.prefetch_count = prefetch_count

        self._lock = asyncio.Lock()
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None
        self._declared: Set[str] = set()
        self._consumers: List[Tuple[AbstractQueue, str]] = []

    @property
    def is_connected(self) -> bool:
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and not self._channel.is_closed
        )

    async def connect(self, max_attempts: Optional[int] = None) -> None:
        """
        Establishes the shared connection, retrying with exponential backoff and jitter.

        Concurrent callers wait on the lock and reuse whatever the first one
        established. Raises BrokerUnavailableError when every attempt failed.
        """
        if self.is_connected:
            return
        attempts = max_attempts or self.max_attempts

        async with self._lock:
            if self.is_connected:
                return
            await self._discard_stale_connection()

            last_error: Optional[BaseException] = None
            for attempt in range(1, attempts + 1):
                try:
                    self._connection = await aio_pika.connect_robust(self.url)
                    break
                except CONNECT_ERRORS as e:
                    last_error = e
                    if attempt == attempts:
                        break
                    delay = compute_backoff_seconds(
                        attempt, base_seconds=self.base_delay, max_seconds=self.max_delay
                    )
                    log.warning(
                        f"RabbitMQ connection retry {attempt}/{attempts} after {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)

            if self._connection is None:
                log.error(f"RabbitMQ unreachable after {attempts} attempt(s): {last_error}")
                raise BrokerUnavailableError(
                    f"RabbitMQ unreachable after {attempts} attempt(s)"
                ) from last_error

            self._channel = await self._connection.channel(publisher_confirms=True)
            await self._channel.set_qos(prefetch_count=self.prefetch_count)
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name, ExchangeType.DIRECT, durable=True
            )
            self._declared.clear()
            log.info(f"Connected to RabbitMQ, exchange '{self.exchange_name}' ready")

    async def _discard_stale_connection(self) -> None:
        if self._connection is None:
            return
        stale, self._connection = self._connection, None
        self._channel = None
        self._exchange = None
        try:
            await stale.close()
        except Exception as e:
            log.warning(f"Ignoring error while closing stale RabbitMQ connection: {e}")

    async def _ensure_channel(self) -> Tuple[AbstractChannel, AbstractExchange]:
        if not self.is_connected:
            # A single attempt: the caller has its own retry budget
            await self.connect(max_attempts=1)
        return self._channel, self._exchange

    async def _declare_destination(
        self, channel: AbstractChannel, exchange: AbstractExchange, destination: str
    ) -> None:
        if destination in self._declared:
            return
        for name in subscriber_queues(destination):
            queue = await channel.declare_queue(name, durable=True)
            await queue.bind(exchange, routing_key=destination)
        self._declared.add(destination)

    async def publish(
        self,
        event: Any,
        destination: str,
        *,
        message_id: Optional[str] = None,
        event_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """
        Sends one persistent message and returns once the broker confirmed it.

        Any connectivity or protocol error propagates to the caller unchanged.
        """
        body = encode_body(event)
        if isinstance(event, IntegrationEvent):
            message_id = message_id or str(event.event_id)
            event_type = event_type or event.event_name
            correlation_id = correlation_id or event.correlation_id

        channel, exchange = await self._ensure_channel()
        await self._declare_destination(channel, exchange, destination)

        message = Message(
            body=body,
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=message_id,
            type=event_type,
            correlation_id=correlation_id,
            timestamp=utcnow(),
        )
        await exchange.publish(message, routing_key=destination)
        log.debug(f"Published {event_type or 'message'} to '{destination}'")

    async def consume(self, queue_name: str, destination: str, callback: MessageCallback) -> str:
        """Binds a durable queue to a destination and starts delivering its messages to `callback`."""
        channel, exchange = await self._ensure_channel()
        queue = await channel.declare_queue(queue_name, durable=True)
        await queue.bind(exchange, routing_key=destination)
        consumer_tag = await queue.consume(callback, no_ack=False)
        self._consumers.append((queue, consumer_tag))
        log.info(f"Listening to queue '{queue_name}' (routing key '{destination}')")
        return consumer_tag

    async def cancel_consumers(self) -> None:
        consumers, self._consumers = self._consumers, []
        for queue, consumer_tag in consumers:
            try:
                await queue.cancel(consumer_tag)
            except Exception as e:
                log.warning(f"Could not cancel consumer {consumer_tag} on '{queue.name}': {e}")

    async def close(self) -> None:
        await self.cancel_consumers()
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            self._declared.clear()
        log.info("RabbitMQ connection closed")

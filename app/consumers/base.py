"""
Event Consumer

One EventConsumer drains one durable queue (``<service>.<destination>``) and
dispatches each message on its ``eventName`` to a handler coroutine. The
handler owns idempotency and the business outcome; this class owns delivery
concerns: decoding, bounded attempts with backoff, dead-lettering, and the
final ack/nack.

Acknowledgement rules:
  - handled, duplicate, no handler, or informational failure -> ack
  - budget exhausted under a dead-letter policy -> dead-letter entry, then ack
  - undecodable body -> dead-letter entry without retrying, then ack
  - the dead-letter write itself failed -> nack with requeue
"""

import asyncio
import logging
import traceback
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from aio_pika.abc import AbstractIncomingMessage

from app.broker.client import BrokerClient
from app.core.clock import utcnow
from app.core.errors import BusinessRuleError, InvalidEventError
from app.core.logging import bind_correlation_id
from app.core.retry import compute_backoff_seconds
from app.events.contracts import IntegrationEvent, parse_event
from app.events.routing import queue_name
from app.consumers.policies import ExhaustionAction, RetryPolicy, policy_for
from app.outbox.dead_letter import DeadLetterStore

log = logging.getLogger(__name__)

EventHandler = Callable[[IntegrationEvent], Awaitable[None]]


class ConsumeResult(str, Enum):
    ACK = "ack"
    DEAD_LETTERED = "dead_lettered"
    DISCARDED = "discarded"
    REQUEUE = "requeue"


class EventConsumer:
    def __init__(
        self,
        service: str,
        destination: str,
        handlers: Dict[str, EventHandler],
        *,
        dead_letters: Optional[DeadLetterStore] = None,
        policies: Optional[Dict[str, RetryPolicy]] = None,
    ):
        self.service = service
        self.destination = destination
        self.queue = queue_name(service, destination)
        self.handlers = dict(handlers)
        self.dead_letters = dead_letters or DeadLetterStore()
        self._policies = policies or {}

    def policy(self, event_type: str) -> RetryPolicy:
        return self._policies.get(event_type) or policy_for(self.service, event_type)

    async def start(self, broker: BrokerClient) -> None:
        await broker.consume(self.queue, self.destination, self.on_message)

    async def on_message(self, message: AbstractIncomingMessage) -> None:
        """Broker callback: always settles the message exactly once."""
        try:
            result = await self.handle(message.body, message_id=message.message_id)
        except Exception:
            log.exception(f"Consumer {self.queue} crashed while handling a message; requeuing it")
            result = ConsumeResult.REQUEUE

        if result is ConsumeResult.REQUEUE:
            await message.nack(requeue=True)
        else:
            await message.ack()

    async def handle(self, body: Union[bytes, str], message_id: Optional[str] = None) -> ConsumeResult:
        first_attempt_at = utcnow()
        payload = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

        try:
            event = parse_event(body)
        except InvalidEventError as e:
            log.warning(f"Invalid message on {self.queue}: {e}")
            return await self._dead_letter(
                event_type="unknown",
                payload=payload,
                error=e,
                attempt_count=1,
                first_attempt_at=first_attempt_at,
                message_id=message_id,
            )

        handler = self.handlers.get(event.event_name)
        if handler is None:
            log.warning(f"WARNING: No handler on {self.queue} for event type: {event.event_name}")
            return ConsumeResult.DISCARDED

        message_id = message_id or str(event.event_id)
        policy = self.policy(event.event_name)

        with bind_correlation_id(event.correlation_id):
            attempt = 0
            while True:
                attempt += 1
                try:
                    await asyncio.wait_for(handler(event), timeout=policy.timeout)
                    return ConsumeResult.ACK
                except BusinessRuleError as e:
                    # Retrying cannot change a domain refusal
                    last_error, stack_trace = e, traceback.format_exc()
                    log.warning(f"{event.event_name} {event.event_id} refused on {self.queue}: {e}")
                    break
                except Exception as e:
                    last_error, stack_trace = e, traceback.format_exc()
                    if attempt >= policy.max_attempts:
                        break
                    delay = compute_backoff_seconds(
                        attempt, base_seconds=policy.base_delay, max_seconds=policy.max_delay
                    )
                    log.warning(
                        f"Retrying {event.event_name} {event.event_id} on {self.queue}. "
                        f"Attempt {attempt}/{policy.max_attempts} failed ({e!r}); next in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

            if policy.on_exhausted is ExhaustionAction.LOG:
                log.error(
                    f"{event.event_name} {event.event_id} dropped on {self.queue} after {attempt} "
                    f"attempt(s) ({policy.name} policy): {last_error!r}"
                )
                return ConsumeResult.DISCARDED

            return await self._dead_letter(
                event_type=event.event_name,
                payload=payload,
                error=last_error,
                attempt_count=attempt,
                first_attempt_at=first_attempt_at,
                message_id=message_id,
                stack_trace=stack_trace,
            )

    async def _dead_letter(self, **entry) -> ConsumeResult:
        try:
            await self.dead_letters.record_consumer_failure(
                consumer=self.queue,
                source_queue=self.queue,
                **entry,
            )
        except Exception:
            log.exception(f"Could not dead-letter message on {self.queue}; requeuing it")
            return ConsumeResult.REQUEUE
        return ConsumeResult.DEAD_LETTERED

import logging
from typing import Any, Awaitable, Callable

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from app.events.contracts import IntegrationEvent
from app.events.routing import queue_name, resolve_destination
from app.models.processed_event import ProcessedEvent

log = logging.getLogger(__name__)


def consumer_name(service: str, event_name: str) -> str:
    """Idempotency scope of a handler, the same as the queue it reads: e.g. 'inventory.booking_created'."""
    return queue_name(service, resolve_destination(event_name))


async def already_processed(consumer: str, event_id: str, conn: Any = None) -> bool:
    return await ProcessedEvent.filter(consumer=consumer, event_id=event_id).using_db(conn).exists()


async def run_once(
    consumer: str,
    event: IntegrationEvent,
    action: Callable[[Any], Awaitable[None]],
) -> bool:
    """
    Runs `action(conn)` and records the event as processed, in one transaction.

    Returns False without running the action when `consumer` has already
    processed this eventId. If a concurrent delivery of the same event commits
    first, the unique (consumer, event_id) row makes this transaction fail and
    roll back, which is reported as a duplicate too.
    """
    event_id = str(event.event_id)
    try:
        async with in_transaction() as conn:
            if await already_processed(consumer, event_id, conn):
                log.info(f"Idempotency: Event {event_id} already processed by {consumer}.")
                return False
            await action(conn)
            await ProcessedEvent.create(
                consumer=consumer,
                event_id=event_id,
                event_type=event.event_name,
                using_db=conn,
            )
    except IntegrityError as e:
        log.warning(f"Idempotency: Event {event_id} for {consumer} lost a race with a duplicate delivery: {e}")
        return False
    return True

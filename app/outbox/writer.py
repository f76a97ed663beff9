import logging
from typing import Any, Optional

from app.events.contracts import IntegrationEvent, serialize_event
from app.models.outbox import OutboxRecord

log = logging.getLogger(__name__)


async def append(
    event: IntegrationEvent,
    *,
    service: str,
    conn: Any,
    event_type: Optional[str] = None,
) -> OutboxRecord:
    """
    Creates a new Outbox record using the provided database connection (transaction).

    CRITICAL: 'conn' must be the transaction that carries the business mutation
    the event announces, so either both are committed or neither is. Nothing is
    sent to the broker here; the service's publisher picks the row up later.
    """
    record = await OutboxRecord.create(
        service=service,
        event_type=event_type or event.event_name,
        payload=serialize_event(event),
        correlation_id=event.correlation_id,
        published=False,
        retry_count=0,
        using_db=conn,
    )
    log.debug(f"Outbox append: {record.event_type} {event.event_id} for {service}")
    return record

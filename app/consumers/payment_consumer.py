import logging
from typing import Any, Dict

from app.consumers.base import EventHandler
from app.consumers.idempotency import consumer_name, run_once
from app.events.contracts import BookingCreatedEvent
from app.events.routing import EventType
from app.services import payment_service

log = logging.getLogger(__name__)

SERVICE = "payment"


async def handle_booking_created(event: BookingCreatedEvent):
    """Consumer logic for 'BookingCreated'. Charges the booking amount once."""
    data = event.data
    log.info(f"--- Worker: CHARGING {data.amount} for Booking {data.booking_id} ---")

    async def charge(conn: Any):
        await payment_service.process_payment(
            data.booking_id, data.amount, correlation_id=event.correlation_id, conn=conn
        )

    await run_once(consumer_name(SERVICE, event.event_name), event, charge)


HANDLERS: Dict[str, EventHandler] = {
    EventType.BOOKING_CREATED.value: handle_booking_created,
}

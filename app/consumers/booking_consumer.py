import logging
from typing import Any, Dict

from app.consumers.base import EventHandler
from app.consumers.idempotency import consumer_name, run_once
from app.events.contracts import (
    InventoryReservationFailedEvent,
    PaymentFailedEvent,
    PaymentSucceededEvent,
)
from app.events.routing import EventType
from app.models.booking import BookingStatus
from app.services import booking_service

log = logging.getLogger(__name__)

SERVICE = "booking"


async def handle_inventory_reservation_failed(event: InventoryReservationFailedEvent):
    """
    Consumer logic for 'InventoryReservationFailed'. Cancels the booking and
    announces BookingCancelled so a payment that already went through can be
    dealt with downstream.
    """
    booking_id = event.data.booking_id
    reason = f"Inventory reservation failed: {event.data.reason}"
    log.info(f"--- Worker: CANCELLING Booking {booking_id} ---")

    async def cancel(conn: Any):
        booking = await booking_service.get_booking(booking_id, conn)
        if not booking:
            log.error(f"Booking {booking_id} not found.")
            return
        # Only a booking still waiting on its outcome can be cancelled
        if booking.status != BookingStatus.PENDING:
            log.warning(f"Booking {booking_id} is {booking.status.value}; ignoring reservation failure.")
            return
        await booking_service.cancel_booking(
            booking_id, reason, emit_event=True, correlation_id=event.correlation_id, conn=conn
        )

    await run_once(consumer_name(SERVICE, event.event_name), event, cancel)


async def handle_payment_failed(event: PaymentFailedEvent):
    """
    Consumer logic for 'PaymentFailed'. Cancels the booking. Inventory reacts
    to PaymentFailed on its own, so no BookingCancelled is emitted here.
    """
    booking_id = event.data.booking_id
    reason = f"Payment failed: {event.data.reason}"
    log.info(f"--- Worker: CANCELLING Booking {booking_id} after payment failure ---")

    async def cancel(conn: Any):
        booking = await booking_service.get_booking(booking_id, conn)
        if not booking:
            log.error(f"Booking {booking_id} not found.")
            return
        if booking.status != BookingStatus.PENDING:
            log.warning(f"Booking {booking_id} is {booking.status.value}; ignoring payment failure.")
            return
        await booking_service.cancel_booking(booking_id, reason, emit_event=False, conn=conn)

    await run_once(consumer_name(SERVICE, event.event_name), event, cancel)


async def handle_payment_succeeded(event: PaymentSucceededEvent):
    """Consumer logic for 'PaymentSucceeded'. Moves the booking from PENDING to CONFIRMED."""
    booking_id = event.data.booking_id
    log.info(f"--- Worker: CONFIRMING Booking {booking_id} ---")

    async def confirm(conn: Any):
        booking = await booking_service.get_booking(booking_id, conn)
        if not booking:
            log.error(f"Booking {booking_id} not found.")
            return
        if booking.status == BookingStatus.CANCELLED:
            # Inventory was already given up; the charge needs a manual refund
            log.warning(f"Payment succeeded for CANCELLED Booking {booking_id}; leaving it cancelled.")
            return
        await booking_service.confirm_booking(booking_id, conn=conn)

    await run_once(consumer_name(SERVICE, event.event_name), event, confirm)


HANDLERS: Dict[str, EventHandler] = {
    EventType.INVENTORY_RESERVATION_FAILED.value: handle_inventory_reservation_failed,
    EventType.PAYMENT_FAILED.value: handle_payment_failed,
    EventType.PAYMENT_SUCCEEDED.value: handle_payment_succeeded,
}

import logging
from typing import Any, Dict
from uuid import UUID

from app.consumers.base import EventHandler
from app.consumers.idempotency import consumer_name, run_once
from app.core.errors import BusinessRuleError
from app.events.contracts import (
    BookingCancelledEvent,
    BookingCreatedEvent,
    InventoryReleasedData,
    InventoryReleasedEvent,
    InventoryReservationFailedData,
    InventoryReservationFailedEvent,
    InventoryReservedData,
    InventoryReservedEvent,
    PaymentFailedEvent,
    PaymentSucceededEvent,
)
from app.events.routing import EventType
from app.models.inventory import ReservationStatus
from app.outbox.writer import append
from app.services import inventory_service

log = logging.getLogger(__name__)

SERVICE = "inventory"
RESERVED_QUANTITY = 1  # One room per booking


async def handle_booking_created(event: BookingCreatedEvent):
    """
    Consumer logic for 'BookingCreated'. Holds the room under a lease.

    A domain refusal (unknown room, no stock) is an outcome, not a failure:
    it is announced as InventoryReservationFailed and the event is done.
    """
    data = event.data
    log.info(f"--- Worker: RESERVING {data.room_id} for Booking {data.booking_id} ---")

    async def reserve(conn: Any):
        try:
            reservation = await inventory_service.reserve(
                data.booking_id, data.room_id, RESERVED_QUANTITY, conn=conn
            )
        except BusinessRuleError as e:
            await append(
                InventoryReservationFailedEvent(
                    correlation_id=event.correlation_id,
                    data=InventoryReservationFailedData(
                        booking_id=data.booking_id, item_id=data.room_id, reason=str(e)
                    ),
                ),
                service=SERVICE,
                conn=conn,
            )
            log.warning(f"FAILURE: Reservation failed for Booking {data.booking_id}. Reason: {e}")
            return

        await append(
            InventoryReservedEvent(
                correlation_id=event.correlation_id,
                data=InventoryReservedData(
                    reservation_id=reservation.id,
                    booking_id=data.booking_id,
                    item_id=data.room_id,
                    quantity=reservation.quantity,
                    status=reservation.status.value,
                    expires_at=reservation.expires_at,
                ),
            ),
            service=SERVICE,
            conn=conn,
        )

    await run_once(consumer_name(SERVICE, event.event_name), event, reserve)


async def _compensate(event, booking_id: UUID, reason: str):
    """Releases whatever the booking still holds. Safe to run for any reservation state."""

    async def release(conn: Any):
        reservation = await inventory_service.get_reservation(booking_id, conn=conn)
        if reservation is None:
            log.info(f"No reservation for Booking {booking_id}; nothing to compensate.")
            return
        if reservation.status in (ReservationStatus.RELEASED, ReservationStatus.EXPIRED):
            log.info(f"Reservation for Booking {booking_id} already {reservation.status.value}.")
            return
        if reservation.status == ReservationStatus.CONFIRMED:
            log.warning(f"Reservation for Booking {booking_id} is CONFIRMED; not releasing it ({reason}).")
            return

        reservation = await inventory_service.release(booking_id, reason, conn=conn)
        await reservation.fetch_related("item", using_db=conn)
        await append(
            InventoryReleasedEvent(
                correlation_id=event.correlation_id,
                data=InventoryReleasedData(
                    reservation_id=reservation.id,
                    booking_id=booking_id,
                    item_id=reservation.item.item_id,
                    quantity=reservation.quantity,
                    reason=reason,
                    released_at=reservation.released_at,
                ),
            ),
            service=SERVICE,
            conn=conn,
        )

    await run_once(consumer_name(SERVICE, event.event_name), event, release)


async def handle_payment_failed(event: PaymentFailedEvent):
    """Compensation for 'PaymentFailed': the held room goes back into stock."""
    log.info(f"--- Worker: RELEASING reservation for Booking {event.data.booking_id} ---")
    await _compensate(event, event.data.booking_id, f"Payment failed: {event.data.reason}")


async def handle_booking_cancelled(event: BookingCancelledEvent):
    log.info(f"--- Worker: RELEASING reservation for cancelled Booking {event.data.booking_id} ---")
    await _compensate(event, event.data.booking_id, f"Booking cancelled: {event.data.reason}")


async def handle_payment_succeeded(event: PaymentSucceededEvent):
    booking_id = event.data.booking_id

    async def confirm(conn: Any):
        await inventory_service.confirm(booking_id, conn=conn)

    await run_once(consumer_name(SERVICE, event.event_name), event, confirm)


HANDLERS: Dict[str, EventHandler] = {
    EventType.BOOKING_CREATED.value: handle_booking_created,
    EventType.PAYMENT_FAILED.value: handle_payment_failed,
    EventType.BOOKING_CANCELLED.value: handle_booking_cancelled,
    EventType.PAYMENT_SUCCEEDED.value: handle_payment_succeeded,
}

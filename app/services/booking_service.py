import logging
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID, uuid4

from tortoise.transactions import in_transaction

from app.core.clock import utcnow
from app.core.db import atomic
from app.core.errors import BookingNotFoundError, InvalidBookingStateError
from app.core.logging import get_correlation_id
from app.events.contracts import (
    BookingCancelledData,
    BookingCancelledEvent,
    BookingCreatedData,
    BookingCreatedEvent,
)
from app.models.booking import Booking, BookingStatus
from app.outbox.writer import append

log = logging.getLogger(__name__)

SERVICE = "booking"


async def create_booking(
    user_id: str,
    room_id: str,
    amount: Decimal,
    correlation_id: Optional[str] = None,
) -> Booking:
    """
    Creates the booking in PENDING and its BookingCreated event atomically.
    Inventory and payment react to the event; the caller gets 202 semantics.
    """
    if amount <= 0:
        raise ValueError("Amount must be greater than zero.")

    correlation_id = correlation_id or get_correlation_id() or uuid4().hex
    async with in_transaction() as conn:
        booking = await Booking.create(
            user_id=user_id,
            room_id=room_id,
            amount=amount,
            status=BookingStatus.PENDING,
            using_db=conn,
        )

        # ATOMIC EVENT: Trigger inventory reservation and payment (handled by consumers)
        await append(
            BookingCreatedEvent(
                correlation_id=correlation_id,
                data=BookingCreatedData(
                    booking_id=booking.id,
                    user_id=user_id,
                    room_id=room_id,
                    amount=amount,
                    status=booking.status.value,
                ),
            ),
            service=SERVICE,
            conn=conn,
        )

    log.info(f"Booking {booking.id} created for user {user_id}, room {room_id}.")
    return booking


async def get_booking(booking_id: UUID, conn: Any = None) -> Optional[Booking]:
    return await Booking.get_or_none(id=booking_id).using_db(conn)


async def list_bookings_for_user(user_id: str) -> List[Booking]:
    return await Booking.filter(user_id=user_id).order_by("-created_at")


async def _lock_booking(booking_id: UUID, conn: Any) -> Booking:
    booking = await Booking.filter(id=booking_id).using_db(conn).select_for_update().first()
    if not booking:
        raise BookingNotFoundError(booking_id)
    return booking


async def confirm_booking(booking_id: UUID, conn: Any = None) -> Booking:
    """PENDING -> CONFIRMED. Confirming a confirmed booking is a no-op."""
    async with atomic(conn) as conn:
        booking = await _lock_booking(booking_id, conn)
        if booking.status == BookingStatus.CONFIRMED:
            return booking
        if booking.status != BookingStatus.PENDING:
            raise InvalidBookingStateError(f"Cannot confirm booking {booking_id} in status {booking.status.value}")

        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = utcnow()
        await booking.save(update_fields=["status", "confirmed_at", "updated_at"], using_db=conn)

    log.info(f"Status UPDATE: Booking {booking_id} moved to CONFIRMED.")
    return booking


async def cancel_booking(
    booking_id: UUID,
    reason: str,
    *,
    emit_event: bool = True,
    correlation_id: Optional[str] = None,
    conn: Any = None,
) -> Booking:
    """
    PENDING -> CANCELLED, optionally announcing BookingCancelled in the same
    transaction so inventory releases whatever it holds for the booking.
    Cancelling a cancelled booking is a no-op and emits nothing.
    """
    async with atomic(conn) as conn:
        booking = await _lock_booking(booking_id, conn)
        if booking.status == BookingStatus.CANCELLED:
            return booking
        if booking.status != BookingStatus.PENDING:
            raise InvalidBookingStateError(f"Cannot cancel booking {booking_id} in status {booking.status.value}")

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = utcnow()
        booking.cancellation_reason = reason
        await booking.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"], using_db=conn)

        if emit_event:
            await append(
                BookingCancelledEvent(
                    correlation_id=correlation_id or get_correlation_id(),
                    data=BookingCancelledData(
                        booking_id=booking.id,
                        user_id=booking.user_id,
                        room_id=booking.room_id,
                        reason=reason,
                        cancelled_at=booking.cancelled_at,
                    ),
                ),
                service=SERVICE,
                conn=conn,
            )

    log.info(f"Status UPDATE: Booking {booking_id} CANCELLED. Reason: {reason}")
    return booking

"""
Inventory service: stock levels and the reservation lease state machine.

    RESERVED --payment success--> CONFIRMED
    RESERVED --payment failure / cancellation--> RELEASED   (stock restored)
    RESERVED --lease elapsed--> EXPIRED                     (stock restored)

Every transition that moves stock updates the reservation and its item in the
same transaction, with the item row locked.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from app.core.clock import utcnow
from app.core.config import RESERVATION_LEASE_MINUTES
from app.core.db import atomic
from app.core.errors import (
    BusinessRuleError,
    InsufficientInventoryError,
    InventoryItemNotFoundError,
    ReservationNotFoundError,
)
from app.models.inventory import InventoryItem, InventoryReservation, ReservationStatus

log = logging.getLogger(__name__)

LEASE_DURATION = timedelta(minutes=RESERVATION_LEASE_MINUTES)
EXPIRY_REASON = "Reservation lease expired"


def is_expired(reservation: InventoryReservation, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return reservation.status == ReservationStatus.RESERVED and reservation.expires_at <= now


async def _lock_item(item_pk: UUID, conn: Any) -> InventoryItem:
    return await InventoryItem.filter(id=item_pk).using_db(conn).select_for_update().first()


async def _restore_stock(item: InventoryItem, quantity: int, conn: Any):
    item.available_quantity += quantity
    item.reserved_quantity = max(0, item.reserved_quantity - quantity)
    await item.save(update_fields=["available_quantity", "reserved_quantity", "updated_at"], using_db=conn)


async def _expire(reservation: InventoryReservation, item: InventoryItem, now: datetime, conn: Any):
    reservation.status = ReservationStatus.EXPIRED
    reservation.released_at = now
    reservation.release_reason = EXPIRY_REASON
    await reservation.save(update_fields=["status", "released_at", "release_reason", "updated_at"], using_db=conn)
    await _restore_stock(item, reservation.quantity, conn)
    log.info(f"Reservation {reservation.id} for booking {reservation.booking_id} EXPIRED; stock restored.")


# ----------- Items -----------

async def create_item(item_id: str, name: str, total_quantity: int) -> InventoryItem:
    if total_quantity < 0:
        raise BusinessRuleError("Total quantity cannot be negative")
    if await InventoryItem.exists(item_id=item_id):
        raise BusinessRuleError(f"Inventory item {item_id} already exists")
    return await InventoryItem.create(
        item_id=item_id,
        name=name,
        total_quantity=total_quantity,
        available_quantity=total_quantity,
        reserved_quantity=0,
    )


async def get_item(item_id: str, conn: Any = None) -> InventoryItem:
    item = await InventoryItem.get_or_none(item_id=item_id).using_db(conn)
    if not item:
        raise InventoryItemNotFoundError(item_id)
    return item


async def list_items() -> List[InventoryItem]:
    return await InventoryItem.all().order_by("item_id")


async def check_availability(item_id: str, quantity: int = 1) -> Dict[str, Any]:
    item = await get_item(item_id)
    return {
        "item_id": item.item_id,
        "total_quantity": item.total_quantity,
        "available_quantity": item.available_quantity,
        "reserved_quantity": item.reserved_quantity,
        "requested_quantity": quantity,
        "is_available": item.available_quantity >= quantity,
    }


# ----------- Reservations -----------

async def reserve(
    booking_id: UUID,
    item_id: str,
    quantity: int = 1,
    conn: Any = None,
    now: Optional[datetime] = None,
) -> InventoryReservation:
    """
    Holds `quantity` of `item_id` for a booking under a lease.

    Idempotent per booking: when the booking already has a reservation it is
    returned unchanged. Raises InventoryItemNotFoundError or
    InsufficientInventoryError before touching any row.
    """
    if quantity <= 0:
        raise BusinessRuleError("Quantity must be positive")
    now = now or utcnow()

    async with atomic(conn) as conn:
        existing = await InventoryReservation.get_or_none(booking_id=booking_id).using_db(conn)
        if existing:
            log.info(f"Reservation for booking {booking_id} already exists ({existing.status}); returning it.")
            return existing

        # CRITICAL: Lock the item row so concurrent reservations see each other's decrement
        item = await InventoryItem.filter(item_id=item_id).using_db(conn).select_for_update().first()
        if not item:
            raise InventoryItemNotFoundError(item_id)

        if item.available_quantity < quantity:
            # Leases that ran out still hold stock until someone reads them
            reclaimed = await _expire_item_leases(item, now, conn)
            if reclaimed:
                log.info(f"Reclaimed {reclaimed} expired reservation(s) on {item_id} before reserving.")
            if item.available_quantity < quantity:
                raise InsufficientInventoryError(item_id, item.available_quantity, quantity)

        reservation = await InventoryReservation.create(
            booking_id=booking_id,
            item=item,
            quantity=quantity,
            status=ReservationStatus.RESERVED,
            expires_at=now + LEASE_DURATION,
            using_db=conn,
        )
        item.available_quantity -= quantity
        item.reserved_quantity += quantity
        await item.save(update_fields=["available_quantity", "reserved_quantity", "updated_at"], using_db=conn)

    log.info(
        f"SUCCESS: Reserved {quantity} x {item_id} for booking {booking_id} "
        f"until {reservation.expires_at.isoformat()}"
    )
    return reservation


async def _expire_item_leases(item: InventoryItem, now: datetime, conn: Any) -> int:
    stale = await (
        InventoryReservation.filter(item_id=item.id, status=ReservationStatus.RESERVED, expires_at__lte=now)
        .using_db(conn)
        .select_for_update()
    )
    for reservation in stale:
        await _expire(reservation, item, now, conn)
    return len(stale)


async def get_reservation(
    booking_id: UUID,
    conn: Any = None,
    now: Optional[datetime] = None,
) -> Optional[InventoryReservation]:
    """Reads a booking's reservation, settling an elapsed lease to EXPIRED first."""
    now = now or utcnow()
    async with atomic(conn) as conn:
        reservation = await (
            InventoryReservation.filter(booking_id=booking_id).using_db(conn).select_for_update().first()
        )
        if reservation and is_expired(reservation, now):
            item = await _lock_item(reservation.item_id, conn)
            await _expire(reservation, item, now, conn)
    return reservation


async def release(
    booking_id: UUID,
    reason: str,
    conn: Any = None,
    now: Optional[datetime] = None,
) -> InventoryReservation:
    """
    Compensates a reservation: RESERVED -> RELEASED and the stock goes back.

    Raises ReservationNotFoundError when the booking holds no RESERVED
    reservation. A lease that already ran out is settled as EXPIRED instead;
    the stock is restored either way.
    """
    now = now or utcnow()
    async with atomic(conn) as conn:
        reservation = await (
            InventoryReservation.filter(booking_id=booking_id, status=ReservationStatus.RESERVED)
            .using_db(conn)
            .select_for_update()
            .first()
        )
        if not reservation:
            raise ReservationNotFoundError(booking_id)

        item = await _lock_item(reservation.item_id, conn)
        if is_expired(reservation, now):
            await _expire(reservation, item, now, conn)
            return reservation

        reservation.status = ReservationStatus.RELEASED
        reservation.released_at = now
        reservation.release_reason = reason
        await reservation.save(update_fields=["status", "released_at", "release_reason", "updated_at"], using_db=conn)
        await _restore_stock(item, reservation.quantity, conn)

    log.info(f"SUCCESS: Released reservation {reservation.id} for booking {booking_id}. Reason: {reason}")
    return reservation


async def confirm(
    booking_id: UUID,
    conn: Any = None,
    now: Optional[datetime] = None,
) -> Optional[InventoryReservation]:
    """
    RESERVED -> CONFIRMED. A no-op for any other state, and for a booking
    without a reservation (returns None). An elapsed lease becomes EXPIRED
    rather than CONFIRMED.
    """
    now = now or utcnow()
    async with atomic(conn) as conn:
        reservation = await (
            InventoryReservation.filter(booking_id=booking_id).using_db(conn).select_for_update().first()
        )
        if not reservation:
            log.warning(f"No reservation to confirm for booking {booking_id}.")
            return None

        if reservation.status != ReservationStatus.RESERVED:
            log.info(f"Reservation for booking {booking_id} is {reservation.status}; confirm is a no-op.")
            return reservation

        if is_expired(reservation, now):
            item = await _lock_item(reservation.item_id, conn)
            await _expire(reservation, item, now, conn)
            log.warning(f"Reservation for booking {booking_id} expired before payment confirmation arrived.")
            return reservation

        reservation.status = ReservationStatus.CONFIRMED
        reservation.confirmed_at = now
        await reservation.save(update_fields=["status", "confirmed_at", "updated_at"], using_db=conn)

    log.info(f"Reservation {reservation.id} for booking {booking_id} CONFIRMED.")
    return reservation


async def expire_stale_reservations(now: Optional[datetime] = None, limit: int = 500) -> int:
    """Sweeps RESERVED reservations whose lease has elapsed. Returns how many were expired."""
    now = now or utcnow()
    candidate_ids = await (
        InventoryReservation.filter(status=ReservationStatus.RESERVED, expires_at__lte=now)
        .order_by("expires_at")
        .limit(limit)
        .values_list("id", flat=True)
    )

    expired = 0
    for reservation_id in candidate_ids:
        async with atomic() as conn:
            reservation = await (
                InventoryReservation.filter(id=reservation_id).using_db(conn).select_for_update().first()
            )
            # Re-checked under the lock: a release or confirm may have won the race
            if not reservation or not is_expired(reservation, now):
                continue
            item = await _lock_item(reservation.item_id, conn)
            await _expire(reservation, item, now, conn)
            expired += 1
    return expired

"""
Event type to broker destination mapping.

Every event name the system emits is listed in ``EventType`` and routed
through ``ROUTES``. Names outside the enum still route predictably: the
destination is the lower-cased name with a trailing ``event`` removed
(``"RoomHeldEvent"`` -> ``"roomheld"``).

Destinations are routing keys on one durable exchange. Each consuming service
owns a durable queue per destination (``<service>.<destination>``), so one
event fans out to every service subscribed to it.
"""

from enum import Enum
from typing import Dict, Tuple


class EventType(str, Enum):
    BOOKING_CREATED = "BookingCreated"
    BOOKING_CANCELLED = "BookingCancelled"
    INVENTORY_RESERVED = "InventoryReserved"
    INVENTORY_RESERVATION_FAILED = "InventoryReservationFailed"
    INVENTORY_RELEASED = "InventoryReleased"
    PAYMENT_SUCCEEDED = "PaymentSucceeded"
    PAYMENT_FAILED = "PaymentFailed"


ROUTES: Dict[EventType, str] = {
    EventType.BOOKING_CREATED: "booking_created",
    EventType.BOOKING_CANCELLED: "booking_cancelled",
    EventType.INVENTORY_RESERVED: "inventory_reserved",
    EventType.INVENTORY_RESERVATION_FAILED: "inventory_reservation_failed",
    EventType.INVENTORY_RELEASED: "inventory_released",
    EventType.PAYMENT_SUCCEEDED: "payment_succeeded",
    EventType.PAYMENT_FAILED: "payment_failed",
}

# Which services consume each destination
SUBSCRIPTIONS: Dict[str, Tuple[str, ...]] = {
    "booking_created": ("inventory", "payment"),
    "booking_cancelled": ("inventory",),
    "inventory_reservation_failed": ("booking",),
    "payment_succeeded": ("booking", "inventory"),
    "payment_failed": ("booking", "inventory"),
}


def default_destination(event_type: str) -> str:
    name = event_type.lower()
    if name.endswith("event") and len(name) > len("event"):
        name = name[: -len("event")]
    return name


def resolve_destination(event_type: str) -> str:
    """Explicit route when the event type is known, otherwise the default."""
    try:
        return ROUTES[EventType(event_type)]
    except ValueError:
        return default_destination(event_type)


def queue_name(service: str, destination: str) -> str:
    return f"{service}.{destination}"


def subscriber_queues(destination: str) -> Tuple[str, ...]:
    """
    Durable queues that must exist for a destination before publishing to it.

    A destination nobody subscribes to still gets a queue named after itself,
    so published messages are held instead of being dropped as unroutable.
    """
    services = SUBSCRIPTIONS.get(destination)
    if not services:
        return (destination,)
    return tuple(queue_name(service, destination) for service in services)

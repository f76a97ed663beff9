# app/models/__init__.py
from .booking import Booking, BookingStatus
from .dead_letter import DeadLetterRecord
from .inventory import InventoryItem, InventoryReservation, ReservationStatus
from .outbox import OutboxRecord
from .payment import Payment, PaymentStatus
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "Booking",
    "BookingStatus",
    "DeadLetterRecord",
    "InventoryItem",
    "InventoryReservation",
    "OutboxRecord",
    "Payment",
    "PaymentStatus",
    "ProcessedEvent",
    "ReservationStatus",
]

"""
Exception taxonomy.

BusinessRuleError and its subclasses describe outcomes the domain expects
(insufficient stock, unknown reservation). Consumers turn them into failure
events instead of retrying. They derive from ValueError so the API layer maps
them to 400 responses. Everything else is treated as transient.
"""


class BusinessRuleError(ValueError):
    """A request that the domain refuses; retrying will not change the answer."""


class InventoryItemNotFoundError(BusinessRuleError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Inventory item {item_id} not found")


class InsufficientInventoryError(BusinessRuleError):
    def __init__(self, item_id: str, available: int, requested: int):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient inventory for {item_id}. Available: {available}, Requested: {requested}"
        )


class ReservationNotFoundError(BusinessRuleError):
    def __init__(self, booking_id):
        self.booking_id = booking_id
        super().__init__(f"No active reservation found for booking {booking_id}")


class BookingNotFoundError(BusinessRuleError):
    def __init__(self, booking_id):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class InvalidBookingStateError(BusinessRuleError):
    pass


class PaymentNotFoundError(BusinessRuleError):
    def __init__(self, booking_id):
        self.booking_id = booking_id
        super().__init__(f"Payment for booking {booking_id} not found")


class PaymentRetryNotAllowedError(BusinessRuleError):
    pass


class DeadLetterNotFoundError(BusinessRuleError):
    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Dead-letter entry {entry_id} not found")


class InvalidEventError(Exception):
    """A message body that cannot be decoded into a known event."""


class BrokerUnavailableError(ConnectionError):
    """Raised when the broker stays unreachable after every connection attempt."""

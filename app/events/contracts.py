"""
Integration event contracts shared by every service.

Each event travels as a JSON envelope with camelCase keys:

    {"eventId": ..., "correlationId": ..., "eventName": ..., "timestamp": ..., "data": {...}}

Consumers dispatch on ``eventName``. The envelope shape is the wire contract;
adding optional fields to ``data`` is compatible, renaming or removing them is
not.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional, Type, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.core.clock import utcnow
from app.core.errors import InvalidEventError


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------- Event data payloads -----------

class BookingCreatedData(_CamelModel):
    booking_id: UUID
    user_id: str
    room_id: str
    amount: Decimal
    status: str = "PENDING"


class BookingCancelledData(_CamelModel):
    booking_id: UUID
    user_id: str
    room_id: str
    reason: str
    cancelled_at: datetime = Field(default_factory=utcnow)


class InventoryReservedData(_CamelModel):
    reservation_id: UUID
    booking_id: UUID
    item_id: str
    quantity: int
    status: str
    expires_at: datetime


class InventoryReservationFailedData(_CamelModel):
    booking_id: UUID
    item_id: str
    reason: str
    failed_at: datetime = Field(default_factory=utcnow)


class InventoryReleasedData(_CamelModel):
    reservation_id: UUID
    booking_id: UUID
    item_id: str
    quantity: int
    reason: str
    released_at: datetime = Field(default_factory=utcnow)


class PaymentSucceededData(_CamelModel):
    payment_id: UUID
    booking_id: UUID
    amount: Decimal
    status: str = "SUCCESS"
    transaction_id: Optional[str] = None


class PaymentFailedData(_CamelModel):
    payment_id: UUID
    booking_id: UUID
    amount: Decimal
    reason: str
    status: str = "FAILED"


# ----------- Envelopes -----------

class IntegrationEvent(_CamelModel):
    event_id: UUID = Field(default_factory=uuid4)
    correlation_id: Optional[str] = None
    event_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: Any = None


class BookingCreatedEvent(IntegrationEvent):
    event_name: Literal["BookingCreated"] = "BookingCreated"
    data: BookingCreatedData


class BookingCancelledEvent(IntegrationEvent):
    event_name: Literal["BookingCancelled"] = "BookingCancelled"
    data: BookingCancelledData


class InventoryReservedEvent(IntegrationEvent):
    event_name: Literal["InventoryReserved"] = "InventoryReserved"
    data: InventoryReservedData


class InventoryReservationFailedEvent(IntegrationEvent):
    event_name: Literal["InventoryReservationFailed"] = "InventoryReservationFailed"
    data: InventoryReservationFailedData


class InventoryReleasedEvent(IntegrationEvent):
    event_name: Literal["InventoryReleased"] = "InventoryReleased"
    data: InventoryReleasedData


class PaymentSucceededEvent(IntegrationEvent):
    event_name: Literal["PaymentSucceeded"] = "PaymentSucceeded"
    data: PaymentSucceededData


class PaymentFailedEvent(IntegrationEvent):
    event_name: Literal["PaymentFailed"] = "PaymentFailed"
    data: PaymentFailedData


EVENT_TYPES: Dict[str, Type[IntegrationEvent]] = {
    "BookingCreated": BookingCreatedEvent,
    "BookingCancelled": BookingCancelledEvent,
    "InventoryReserved": InventoryReservedEvent,
    "InventoryReservationFailed": InventoryReservationFailedEvent,
    "InventoryReleased": InventoryReleasedEvent,
    "PaymentSucceeded": PaymentSucceededEvent,
    "PaymentFailed": PaymentFailedEvent,
}


def serialize_event(event: IntegrationEvent) -> str:
    """Deterministic JSON: camelCase keys, sorted, compact separators."""
    return json.dumps(
        event.model_dump(mode="json", by_alias=True),
        sort_keys=True,
        separators=(",", ":"),
    )


def parse_event(body: Union[bytes, str]) -> IntegrationEvent:
    """Decodes a message body into its typed event, keyed on ``eventName``."""
    try:
        raw = json.loads(body)
    except (TypeError, ValueError) as e:
        raise InvalidEventError(f"Message body is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidEventError("Message body is not a JSON object")

    event_name = raw.get("eventName")
    event_cls = EVENT_TYPES.get(event_name)
    if event_cls is None:
        raise InvalidEventError(f"Unknown event name: {event_name!r}")

    try:
        return event_cls.model_validate(raw)
    except ValidationError as e:
        raise InvalidEventError(f"Invalid {event_name} event: {e}") from e

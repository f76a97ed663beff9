import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.models.booking import BookingStatus


class BookingRequest(BaseModel):
    """Schema for the booking request body."""
    user_id: str = Field(..., min_length=1, description="Identifier of the guest making the booking.")
    room_id: str = Field(..., min_length=1, description="Inventory item id of the room, e.g. ROOM-101.")
    amount: Decimal = Field(..., gt=0, description="Amount to charge for the stay.")


class BookingAcceptedResponse(BaseModel):
    """Response schema for a newly created booking (202 Accepted)."""
    booking_id: uuid.UUID
    status: BookingStatus
    amount: Decimal
    correlation_id: Optional[str] = None
    message: str


class BookingCancelRequest(BaseModel):
    reason: str = Field("Cancelled by user", description="Why the booking is cancelled.")


class BookingDetailResponse(BaseModel):
    """Schema for fetching booking details."""
    id: uuid.UUID
    user_id: str
    room_id: str
    amount: Decimal
    status: BookingStatus
    cancellation_reason: Optional[str] = None
    created_at: str
    confirmed_at: Optional[str] = None
    cancelled_at: Optional[str] = None

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from app.models.inventory import ReservationStatus


class InventoryItemRequest(BaseModel):
    item_id: str = Field(..., min_length=1, description="Business key of the item, e.g. ROOM-101.")
    name: str = Field(..., description="Display name of the item.")
    total_quantity: int = Field(..., ge=0, description="Initial stock quantity.")


class InventoryResponse(BaseModel):
    """Schema for fetching inventory stock."""
    item_id: str
    name: str
    total_quantity: int
    available_quantity: int
    reserved_quantity: int
    updated_at: str


class AvailabilityResponse(BaseModel):
    item_id: str
    total_quantity: int
    available_quantity: int
    reserved_quantity: int
    requested_quantity: int
    is_available: bool


class ReservationRequest(BaseModel):
    """Manual reservation, mainly for operators and tests of the lease lifecycle."""
    booking_id: uuid.UUID
    item_id: str
    quantity: int = Field(1, gt=0)


class ReleaseRequest(BaseModel):
    reason: str = Field("Released manually", description="Recorded on the reservation.")


class ReservationResponse(BaseModel):
    id: uuid.UUID
    booking_id: uuid.UUID
    quantity: int
    status: ReservationStatus
    expires_at: str
    confirmed_at: Optional[str] = None
    released_at: Optional[str] = None
    release_reason: Optional[str] = None

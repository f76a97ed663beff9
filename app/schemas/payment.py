import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from app.models.payment import PaymentStatus


class PaymentResponse(BaseModel):
    """Schema for fetching a booking's payment."""
    id: uuid.UUID
    booking_id: uuid.UUID
    amount: Decimal
    status: PaymentStatus
    payment_method: str
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    processed_at: Optional[str] = None

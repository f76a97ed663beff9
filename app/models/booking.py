from enum import Enum
from tortoise import fields, models
import uuid


class BookingStatus(str, Enum):
    PENDING = "PENDING"  # Waiting for inventory and payment outcomes
    CONFIRMED = "CONFIRMED"  # Payment succeeded
    CANCELLED = "CANCELLED"  # Inventory or payment failed, or cancelled by the user


class Booking(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    user_id = fields.CharField(max_length=64)
    room_id = fields.CharField(max_length=64) # Inventory item id; no cross-service FK
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    confirmed_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    cancellation_reason = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bookings"
        indexes = [
            ("user_id",),                # User booking history
            ("status",),                 # Status-based filtering
            ("status", "created_at"),    # Composite: status with time
        ]

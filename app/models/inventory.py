from enum import Enum
from tortoise import fields, models
import uuid


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"  # Holding stock under a lease
    CONFIRMED = "CONFIRMED"  # Payment succeeded, terminal
    RELEASED = "RELEASED"  # Compensated, stock restored, terminal
    EXPIRED = "EXPIRED"  # Lease ran out before confirmation, stock restored, terminal


class InventoryItem(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    item_id = fields.CharField(max_length=64, unique=True) # Business key, e.g. 'ROOM-101'
    name = fields.CharField(max_length=255)
    total_quantity = fields.IntField()
    available_quantity = fields.IntField()
    reserved_quantity = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "inventory_items"


class InventoryReservation(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    # One reservation per booking; this is the uniqueness the reserve step relies on
    booking_id = fields.UUIDField(unique=True)
    item = fields.ForeignKeyField("models.InventoryItem", related_name="reservations")
    quantity = fields.IntField()
    status = fields.CharEnumField(ReservationStatus, default=ReservationStatus.RESERVED)
    expires_at = fields.DatetimeField()
    confirmed_at = fields.DatetimeField(null=True)
    released_at = fields.DatetimeField(null=True)
    release_reason = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "inventory_reservations"
        indexes = [
            ("status", "expires_at"),  # Expiry sweep
        ]

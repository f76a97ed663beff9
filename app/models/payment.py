from enum import Enum
from tortoise import fields, models
import uuid


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"  # Retryable by an operator
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"  # Retry budget spent


class Payment(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    booking_id = fields.UUIDField(unique=True) # One payment per booking
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    payment_method = fields.CharField(max_length=32, default="CREDIT_CARD")
    transaction_id = fields.CharField(max_length=64, null=True)
    error_message = fields.TextField(null=True)
    processed_at = fields.DatetimeField(null=True)
    retry_count = fields.IntField(default=0)
    last_retry_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "payments"
        indexes = [
            ("status",),
        ]

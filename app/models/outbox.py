import uuid

from tortoise import fields, models

from app.core.clock import utcnow


class OutboxRecord(models.Model):
    """
    The Outbox table stores events atomically with the database transaction.
    This is the core of the Transactional Outbox Pattern.

    Rows are written by the owning service inside its business transaction and
    afterwards mutated only by that service's publisher. They are never deleted:
    once published (or dead-lettered) they stay as history.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    service = fields.CharField(max_length=32) # Owning service, e.g. 'booking'
    event_type = fields.CharField(max_length=128) # e.g. 'BookingCreated'
    payload = fields.TextField() # Serialized event envelope, decoded by event_type
    correlation_id = fields.CharField(max_length=128, null=True)
    created_at = fields.DatetimeField(default=utcnow)
    published = fields.BooleanField(default=False)
    published_at = fields.DatetimeField(null=True)
    retry_count = fields.IntField(default=0)
    last_error = fields.TextField(null=True)
    first_attempt_at = fields.DatetimeField(null=True)
    last_attempt_at = fields.DatetimeField(null=True)
    # Claim lease so that concurrent publisher instances do not pick the same row
    claimed_by = fields.CharField(max_length=128, null=True)
    claimed_until = fields.DatetimeField(null=True)

    class Meta:
        table = "outbox_records"
        indexes = [
            ("service", "published", "created_at"),  # Pending scan, oldest-first
        ]

    def __str__(self):
        return f"OutboxRecord({self.event_type}, {self.id})"

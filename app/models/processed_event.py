from tortoise import fields, models
import uuid


class ProcessedEvent(models.Model):
    """
    Table used for Idempotency in Consumers. Stores the eventId of every
    event a consumer has applied, written in the same transaction as the effect,
    so a redelivered event is recognised and acknowledged without reapplying it.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    consumer = fields.CharField(max_length=128) # e.g. 'inventory.booking_created'
    event_id = fields.CharField(max_length=128)
    event_type = fields.CharField(max_length=128, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
        unique_together = (("consumer", "event_id"),)

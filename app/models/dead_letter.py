import uuid

from tortoise import fields, models

from app.core.clock import utcnow


class DeadLetterRecord(models.Model):
    """
    Terminal holding area for messages that exhausted their retry budget.

    Written either by an outbox publisher (outbox_record_id set, unique so a
    record is dead-lettered at most once) or by a consumer's retry wrapper
    (source_message_id set). Only the manual resolution workflow updates it.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    source_queue = fields.CharField(max_length=255)
    event_type = fields.CharField(max_length=128)
    payload = fields.TextField()
    error_message = fields.TextField()
    stack_trace = fields.TextField(null=True)
    attempt_count = fields.IntField()
    first_attempt_at = fields.DatetimeField()
    failed_at = fields.DatetimeField(default=utcnow)
    outbox_record_id = fields.UUIDField(null=True, unique=True)
    source_message_id = fields.CharField(max_length=255, null=True)
    consumer = fields.CharField(max_length=128, null=True)
    resolved = fields.BooleanField(default=False)
    resolved_at = fields.DatetimeField(null=True)
    resolution_notes = fields.TextField(null=True)
    resolved_by = fields.CharField(max_length=128, null=True)

    class Meta:
        table = "dead_letter_records"
        unique_together = (("consumer", "source_message_id"),)
        indexes = [
            ("resolved", "failed_at"),
            ("source_queue",),
        ]

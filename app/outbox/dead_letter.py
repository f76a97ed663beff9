"""
Dead-Letter Store

Holds messages that exhausted their retry budget: outbox records the
publisher could not deliver, and broker messages a consumer could not
process. Entries stay unresolved until an operator resolves or requeues them.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError

from app.core.clock import utcnow
from app.core.config import ERROR_TRUNCATE_LENGTH
from app.core.db import atomic
from app.core.errors import BusinessRuleError, DeadLetterNotFoundError
from app.models.dead_letter import DeadLetterRecord
from app.models.outbox import OutboxRecord

log = logging.getLogger(__name__)


class DeadLetterStore:

    async def record_outbox_exhausted(
        self,
        record: OutboxRecord,
        source_queue: str,
        conn: Any = None,
    ) -> DeadLetterRecord:
        """
        Dead-letters an outbox record that used up its publish attempts.

        Keyed on the outbox record id: calling this again for the same record
        returns the existing entry instead of creating a second one.
        """
        error_message = record.last_error or "Publish retry budget exhausted"
        entry = await DeadLetterRecord.get_or_none(outbox_record_id=record.id).using_db(conn)
        if entry and not entry.resolved:
            return entry

        if entry:
            # Requeued earlier by an operator and exhausted again: reopen the same entry
            entry.resolved = False
            entry.resolved_at = None
            entry.error_message = error_message
            entry.attempt_count += record.retry_count
            entry.failed_at = utcnow()
            await entry.save(
                update_fields=["resolved", "resolved_at", "error_message", "attempt_count", "failed_at"],
                using_db=conn,
            )
        else:
            entry = await DeadLetterRecord.create(
                source_queue=source_queue,
                event_type=record.event_type,
                payload=record.payload,
                error_message=error_message,
                attempt_count=record.retry_count,
                first_attempt_at=record.first_attempt_at or record.created_at,
                failed_at=utcnow(),
                outbox_record_id=record.id,
                using_db=conn,
            )
        log.error(
            f"DEAD-LETTERED outbox record {record.id} ({record.event_type}) after "
            f"{record.retry_count} failed publish attempts. Manual attention required. "
            f"Last error: {record.last_error}"
        )
        return entry

    async def record_consumer_failure(
        self,
        *,
        consumer: str,
        source_queue: str,
        event_type: str,
        payload: str,
        error: BaseException,
        attempt_count: int,
        first_attempt_at: datetime,
        message_id: Optional[str] = None,
        stack_trace: Optional[str] = None,
    ) -> DeadLetterRecord:
        """Dead-letters a broker message a consumer gave up on. Idempotent per (consumer, message id)."""
        if message_id:
            existing = await DeadLetterRecord.get_or_none(consumer=consumer, source_message_id=message_id)
            if existing:
                return existing
        try:
            entry = await DeadLetterRecord.create(
                source_queue=source_queue,
                event_type=event_type,
                payload=payload,
                error_message=(str(error) or error.__class__.__name__)[:ERROR_TRUNCATE_LENGTH],
                stack_trace=stack_trace,
                attempt_count=attempt_count,
                first_attempt_at=first_attempt_at,
                failed_at=utcnow(),
                source_message_id=message_id,
                consumer=consumer,
            )
        except IntegrityError:
            # A concurrent redelivery of the same message got there first
            return await DeadLetterRecord.get(consumer=consumer, source_message_id=message_id)

        log.error(
            f"DEAD-LETTERED message {message_id} ({event_type}) from {source_queue} after "
            f"{attempt_count} attempt(s) in {consumer}. Manual attention required. Error: {error}"
        )
        return entry

    # ----------- Inspection & manual resolution -----------

    async def list_entries(
        self,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeadLetterRecord]:
        query = DeadLetterRecord.all()
        if resolved is not None:
            query = query.filter(resolved=resolved)
        return await query.order_by("-failed_at").offset(offset).limit(limit)

    async def get_entry(self, entry_id: UUID) -> DeadLetterRecord:
        entry = await DeadLetterRecord.get_or_none(id=entry_id)
        if not entry:
            raise DeadLetterNotFoundError(entry_id)
        return entry

    async def count_unresolved(self) -> int:
        return await DeadLetterRecord.filter(resolved=False).count()

    async def resolve(
        self,
        entry_id: UUID,
        resolved_by: str,
        notes: Optional[str] = None,
        conn: Any = None,
    ) -> DeadLetterRecord:
        entry = await DeadLetterRecord.get_or_none(id=entry_id).using_db(conn)
        if not entry:
            raise DeadLetterNotFoundError(entry_id)
        if entry.resolved:
            return entry

        entry.resolved = True
        entry.resolved_at = utcnow()
        entry.resolved_by = resolved_by
        entry.resolution_notes = notes
        await entry.save(
            update_fields=["resolved", "resolved_at", "resolved_by", "resolution_notes"],
            using_db=conn,
        )
        log.info(f"Dead-letter entry {entry_id} resolved by {resolved_by}")
        return entry

    async def requeue_outbox_record(self, entry_id: UUID, resolved_by: str) -> OutboxRecord:
        """
        Re-arms the outbox record behind a dead-letter entry so its publisher
        delivers it again, and resolves the entry. Only publisher-side entries
        can be requeued this way.
        """
        async with atomic() as conn:
            entry = await DeadLetterRecord.get_or_none(id=entry_id).using_db(conn)
            if not entry:
                raise DeadLetterNotFoundError(entry_id)
            if entry.outbox_record_id is None:
                raise BusinessRuleError(f"Dead-letter entry {entry_id} did not come from an outbox")
            if entry.resolved:
                raise BusinessRuleError(f"Dead-letter entry {entry_id} is already resolved")

            record = await OutboxRecord.get(id=entry.outbox_record_id).using_db(conn)
            record.published = False
            record.published_at = None
            record.retry_count = 0
            record.last_error = None
            record.claimed_by = None
            record.claimed_until = None
            await record.save(
                update_fields=[
                    "published", "published_at", "retry_count",
                    "last_error", "claimed_by", "claimed_until",
                ],
                using_db=conn,
            )
            await self.resolve(entry_id, resolved_by, notes="Requeued for publishing", conn=conn)

        log.warning(f"Outbox record {record.id} requeued from dead-letter entry {entry_id} by {resolved_by}")
        return record

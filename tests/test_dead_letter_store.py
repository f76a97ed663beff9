from datetime import timedelta

import pytest

from app.core.clock import utcnow
from app.core.errors import BusinessRuleError, DeadLetterNotFoundError
from app.models.dead_letter import DeadLetterRecord
from app.models.outbox import OutboxRecord
from app.outbox.dead_letter import DeadLetterStore


async def _exhausted_record(**overrides):
    values = dict(
        service="booking",
        event_type="BookingCreated",
        payload='{"eventName": "BookingCreated"}',
        retry_count=5,
        last_error="connection refused",
        first_attempt_at=utcnow() - timedelta(minutes=3),
        published=False,
    )
    values.update(overrides)
    return await OutboxRecord.create(**values)


async def _consumer_entry(store, message_id="msg-1"):
    return await store.record_consumer_failure(
        consumer="inventory.payment_failed",
        source_queue="inventory.payment_failed",
        event_type="PaymentFailed",
        payload="{}",
        error=RuntimeError("database unavailable"),
        attempt_count=10,
        first_attempt_at=utcnow(),
        message_id=message_id,
    )


class TestDeadLetterStore:

    @pytest.mark.asyncio
    async def test_outbox_record_is_dead_lettered_once(self, db):
        store = DeadLetterStore()
        record = await _exhausted_record()

        first = await store.record_outbox_exhausted(record, "booking_created")
        second = await store.record_outbox_exhausted(record, "booking_created")

        assert first.id == second.id
        assert first.attempt_count == 5
        assert first.error_message == "connection refused"
        assert await DeadLetterRecord.all().count() == 1

    @pytest.mark.asyncio
    async def test_consumer_failure_is_idempotent_per_message(self, db):
        store = DeadLetterStore()
        first = await _consumer_entry(store)
        again = await _consumer_entry(store)
        other = await _consumer_entry(store, message_id="msg-2")

        assert first.id == again.id
        assert other.id != first.id
        assert await store.count_unresolved() == 2

    @pytest.mark.asyncio
    async def test_resolve_and_list(self, db):
        store = DeadLetterStore()
        entry = await _consumer_entry(store)

        resolved = await store.resolve(entry.id, "ops@example.com", "replayed by hand")

        assert resolved.resolved is True
        assert resolved.resolved_by == "ops@example.com"
        assert await store.count_unresolved() == 0
        assert [e.id for e in await store.list_entries(resolved=True)] == [entry.id]
        assert await store.list_entries(resolved=False) == []

    @pytest.mark.asyncio
    async def test_unknown_entry(self, db):
        store = DeadLetterStore()
        entry = await _consumer_entry(store)
        await entry.delete()

        with pytest.raises(DeadLetterNotFoundError):
            await store.get_entry(entry.id)

    @pytest.mark.asyncio
    async def test_requeue_rearms_the_outbox_record(self, db):
        store = DeadLetterStore()
        record = await _exhausted_record()
        entry = await store.record_outbox_exhausted(record, "booking_created")

        requeued = await store.requeue_outbox_record(entry.id, "ops@example.com")

        assert requeued.id == record.id
        refreshed = await OutboxRecord.get(id=record.id)
        assert refreshed.published is False
        assert refreshed.retry_count == 0
        assert refreshed.last_error is None
        assert (await store.get_entry(entry.id)).resolved is True

    @pytest.mark.asyncio
    async def test_requeued_record_exhausted_again_reopens_entry(self, db):
        store = DeadLetterStore()
        record = await _exhausted_record()
        entry = await store.record_outbox_exhausted(record, "booking_created")
        await store.requeue_outbox_record(entry.id, "ops@example.com")

        record = await OutboxRecord.get(id=record.id)
        record.retry_count = 5
        record.last_error = "still down"
        reopened = await store.record_outbox_exhausted(record, "booking_created")

        assert reopened.id == entry.id
        assert reopened.resolved is False
        assert reopened.attempt_count == 10
        assert reopened.error_message == "still down"

    @pytest.mark.asyncio
    async def test_consumer_entries_cannot_be_requeued(self, db):
        store = DeadLetterStore()
        entry = await _consumer_entry(store)

        with pytest.raises(BusinessRuleError):
            await store.requeue_outbox_record(entry.id, "ops@example.com")

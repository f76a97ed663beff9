"""
Outbox Store: read and state-transition access to one service's outbox rows.

Publishing instances coordinate through a claim lease. Before publishing, an
instance flips ``claimed_by``/``claimed_until`` on each candidate row with a
conditional UPDATE that only matches rows that are unclaimed or whose lease
has lapsed. Only rows whose UPDATE matched are published by that instance, so
two instances never routinely publish the same row. A crashed instance's rows
become claimable again once its lease expires.

A batch can take longer to publish than one lease lasts, so each row's lease
is renewed right before it is handled, and every outcome is written only
while the row is still claimed by this instance. A row lost to another
instance in the meantime is skipped.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from tortoise.expressions import Q

from app.core.clock import utcnow
from app.core.config import CLAIM_TTL_SECONDS, ERROR_TRUNCATE_LENGTH, INSTANCE_ID
from app.models.outbox import OutboxRecord

log = logging.getLogger(__name__)


def truncate_error(error: Any, limit: int = ERROR_TRUNCATE_LENGTH) -> str:
    text = str(error) or error.__class__.__name__
    return text[:limit]


class OutboxStore:
    def __init__(
        self,
        service: str,
        instance_id: str = INSTANCE_ID,
        claim_ttl_seconds: int = CLAIM_TTL_SECONDS,
        error_truncate_length: int = ERROR_TRUNCATE_LENGTH,
    ):
        self.service = service
        self.instance_id = instance_id
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.error_truncate_length = error_truncate_length

    def _claimable(self, now: datetime) -> Q:
        return Q(claimed_until__isnull=True) | Q(claimed_until__lt=now)

    async def fetch_unpublished(self, limit: int) -> List[OutboxRecord]:
        """Unpublished rows of this service, oldest first."""
        return await (
            OutboxRecord.filter(service=self.service, published=False)
            .order_by("created_at", "id")
            .limit(limit)
        )

    async def claim_batch(self, limit: int, now: Optional[datetime] = None) -> List[OutboxRecord]:
        """Claims up to `limit` unpublished rows for this instance and returns them oldest first."""
        now = now or utcnow()
        candidate_ids = await (
            OutboxRecord.filter(service=self.service, published=False)
            .filter(self._claimable(now))
            .order_by("created_at", "id")
            .limit(limit)
            .values_list("id", flat=True)
        )
        if not candidate_ids:
            return []

        claimed_ids = []
        lease_until = now + self.claim_ttl
        for record_id in candidate_ids:
            # Conditional update: matches only if nobody else claimed the row in between
            updated = await (
                OutboxRecord.filter(id=record_id, published=False)
                .filter(self._claimable(now))
                .update(claimed_by=self.instance_id, claimed_until=lease_until)
            )
            if updated:
                claimed_ids.append(record_id)

        skipped = len(candidate_ids) - len(claimed_ids)
        if skipped:
            log.info(f"Outbox claim: {skipped} record(s) already claimed by another instance")
        if not claimed_ids:
            return []
        return await OutboxRecord.filter(id__in=claimed_ids).order_by("created_at", "id")

    async def renew_claim(
        self,
        record: OutboxRecord,
        lease_seconds: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Extends this instance's lease on one row right before it is handled.

        Returns False when the row is no longer ours: its lease lapsed while
        earlier rows of the batch were being published and another instance
        claimed it.
        """
        now = now or utcnow()
        lease = max(self.claim_ttl, timedelta(seconds=lease_seconds or 0))
        claimed_until = now + lease
        updated = await OutboxRecord.filter(
            id=record.id, published=False, claimed_by=self.instance_id
        ).update(claimed_until=claimed_until)
        if updated:
            record.claimed_until = claimed_until
        return bool(updated)

    async def mark_published(
        self, record: OutboxRecord, now: Optional[datetime] = None, conn: Any = None
    ) -> bool:
        """Terminal mark. Only applies while this instance still holds the claim."""
        now = now or utcnow()
        # published_at never precedes created_at, even with clock skew between hosts
        published_at = max(now, record.created_at) if record.created_at else now
        first_attempt_at = record.first_attempt_at or now
        updated = await (
            OutboxRecord.filter(id=record.id, published=False, claimed_by=self.instance_id)
            .using_db(conn)
            .update(
                published=True,
                published_at=published_at,
                last_attempt_at=now,
                first_attempt_at=first_attempt_at,
                claimed_by=None,
                claimed_until=None,
            )
        )
        if not updated:
            log.warning(f"Outbox record {record.id} is no longer claimed by {self.instance_id}; not marking it")
            return False

        record.published = True
        record.published_at = published_at
        record.last_attempt_at = now
        record.first_attempt_at = first_attempt_at
        record.claimed_by = None
        record.claimed_until = None
        return True

    async def mark_failed(self, record: OutboxRecord, error: Any, now: Optional[datetime] = None) -> bool:
        """Records a failed attempt and gives the row back. Only applies while this instance holds the claim."""
        now = now or utcnow()
        last_error = truncate_error(error, self.error_truncate_length)
        first_attempt_at = record.first_attempt_at or now
        updated = await OutboxRecord.filter(
            id=record.id, published=False, claimed_by=self.instance_id
        ).update(
            retry_count=record.retry_count + 1,
            last_error=last_error,
            last_attempt_at=now,
            first_attempt_at=first_attempt_at,
            # Give the row back so the next cycle (on any instance) can retry it
            claimed_by=None,
            claimed_until=None,
        )
        if not updated:
            log.warning(f"Outbox record {record.id} is no longer claimed by {self.instance_id}; failure not recorded")
            return False

        record.retry_count += 1
        record.last_error = last_error
        record.last_attempt_at = now
        record.first_attempt_at = first_attempt_at
        record.claimed_by = None
        record.claimed_until = None
        return True

    async def release_claims(self) -> int:
        """Drops this instance's leases on rows it did not get to, e.g. when stopping mid-batch."""
        return await OutboxRecord.filter(
            service=self.service, published=False, claimed_by=self.instance_id
        ).update(claimed_by=None, claimed_until=None)

    async def pending_count(self) -> int:
        return await OutboxRecord.filter(service=self.service, published=False).count()

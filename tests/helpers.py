import asyncio
import json
from typing import List, Optional

from app.models.outbox import OutboxRecord


class FakeBroker:
    """Records publishes instead of talking to RabbitMQ; can be told to fail or stall."""

    def __init__(self, fail_with: Optional[BaseException] = None, delay: float = 0):
        self.fail_with = fail_with
        self.delay = delay
        self.published: List[dict] = []
        self.is_connected = True

    async def publish(self, event, destination, *, message_id=None, event_type=None, correlation_id=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.published.append(
            {
                "body": event,
                "destination": destination,
                "message_id": message_id,
                "event_type": event_type,
                "correlation_id": correlation_id,
            }
        )


async def outbox_events(service: str) -> List[dict]:
    """Decoded payloads of a service's outbox, oldest first."""
    records = await OutboxRecord.filter(service=service).order_by("created_at", "id")
    return [json.loads(r.payload) for r in records]

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from app.consumers import booking_consumer, inventory_consumer, payment_consumer
from app.consumers.base import EventConsumer, EventHandler
from app.events.routing import resolve_destination
from app.outbox.dead_letter import DeadLetterStore

# Event handlers per service, keyed on eventName
SERVICE_HANDLERS: Dict[str, Dict[str, EventHandler]] = {
    booking_consumer.SERVICE: booking_consumer.HANDLERS,
    inventory_consumer.SERVICE: inventory_consumer.HANDLERS,
    payment_consumer.SERVICE: payment_consumer.HANDLERS,
}


def build_consumers(
    services: Iterable[str],
    dead_letters: Optional[DeadLetterStore] = None,
) -> List[EventConsumer]:
    """One EventConsumer per (service, destination) the hosted services listen to."""
    dead_letters = dead_letters or DeadLetterStore()
    consumers = []
    for service in services:
        by_destination: Dict[str, Dict[str, EventHandler]] = defaultdict(dict)
        for event_name, handler in SERVICE_HANDLERS.get(service, {}).items():
            by_destination[resolve_destination(event_name)][event_name] = handler
        for destination, handlers in sorted(by_destination.items()):
            consumers.append(EventConsumer(service, destination, handlers, dead_letters=dead_letters))
    return consumers

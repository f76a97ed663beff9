"""
Retry budget and exhaustion policy per (service, event type).

Compensating actions get the largest budget because a dropped release leaves
stock held forever. Informational confirmations give up quietly: a missed
confirmation only leaves a reservation in RESERVED, which the lease sweep
eventually turns into EXPIRED.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Tuple

from app.core.config import (
    COMPENSATING_MAX_ATTEMPTS,
    CONSUMER_RETRY_BASE_DELAY,
    CONSUMER_RETRY_MAX_DELAY,
    FORWARD_MAX_ATTEMPTS,
    HANDLER_TIMEOUT,
    INFORMATIONAL_MAX_ATTEMPTS,
)
from app.events.routing import EventType


class ExhaustionAction(str, Enum):
    DEAD_LETTER = "dead_letter"
    LOG = "log"


@dataclass(frozen=True)
class RetryPolicy:
    name: str
    max_attempts: int
    on_exhausted: ExhaustionAction
    base_delay: float = CONSUMER_RETRY_BASE_DELAY
    max_delay: float = CONSUMER_RETRY_MAX_DELAY
    timeout: float = HANDLER_TIMEOUT

    def with_delays(self, base_delay: float, max_delay: float) -> "RetryPolicy":
        return replace(self, base_delay=base_delay, max_delay=max_delay)


FORWARD = RetryPolicy("forward", FORWARD_MAX_ATTEMPTS, ExhaustionAction.DEAD_LETTER)
COMPENSATING = RetryPolicy("compensating", COMPENSATING_MAX_ATTEMPTS, ExhaustionAction.DEAD_LETTER)
INFORMATIONAL = RetryPolicy("informational", INFORMATIONAL_MAX_ATTEMPTS, ExhaustionAction.LOG)

CONSUMER_POLICIES: Dict[Tuple[str, str], RetryPolicy] = {
    ("inventory", EventType.BOOKING_CREATED.value): FORWARD,
    ("inventory", EventType.PAYMENT_FAILED.value): COMPENSATING,
    ("inventory", EventType.BOOKING_CANCELLED.value): COMPENSATING,
    ("inventory", EventType.PAYMENT_SUCCEEDED.value): INFORMATIONAL,
    ("booking", EventType.INVENTORY_RESERVATION_FAILED.value): FORWARD,
    ("booking", EventType.PAYMENT_FAILED.value): FORWARD,
    ("booking", EventType.PAYMENT_SUCCEEDED.value): FORWARD,
    ("payment", EventType.BOOKING_CREATED.value): FORWARD,
}


def policy_for(service: str, event_type: str) -> RetryPolicy:
    return CONSUMER_POLICIES.get((service, event_type), FORWARD)

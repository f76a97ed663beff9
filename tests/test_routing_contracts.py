import json
import random
from decimal import Decimal
from uuid import uuid4

import pytest

from app.consumers.policies import COMPENSATING, FORWARD, INFORMATIONAL, ExhaustionAction, policy_for
from app.consumers.registry import SERVICE_HANDLERS
from app.core.errors import InvalidEventError
from app.core.retry import compute_backoff_seconds
from app.events.contracts import (
    EVENT_TYPES,
    PaymentFailedData,
    PaymentFailedEvent,
    parse_event,
    serialize_event,
)
from app.events.routing import (
    ROUTES,
    SUBSCRIPTIONS,
    EventType,
    default_destination,
    resolve_destination,
    subscriber_queues,
)


class TestRouting:

    def test_every_event_type_has_an_explicit_route(self):
        assert set(ROUTES) == set(EventType)
        assert set(EVENT_TYPES) == {e.value for e in EventType}

    def test_explicit_routes(self):
        assert resolve_destination("BookingCreated") == "booking_created"
        assert resolve_destination("InventoryReservationFailed") == "inventory_reservation_failed"
        assert resolve_destination("PaymentFailed") == "payment_failed"

    @pytest.mark.parametrize(
        "event_type, destination",
        [
            ("RoomHeldEvent", "roomheld"),
            ("RoomHeld", "roomheld"),
            ("GuestNotified", "guestnotified"),
            ("Event", "event"),
        ],
    )
    def test_fallback_destination(self, event_type, destination):
        assert default_destination(event_type) == destination
        assert resolve_destination(event_type) == destination

    def test_subscriber_queues(self):
        assert subscriber_queues("payment_failed") == ("booking.payment_failed", "inventory.payment_failed")
        assert subscriber_queues("roomheld") == ("roomheld",)

    def test_handlers_and_subscriptions_agree(self):
        """Every handler's destination lists its service as a subscriber, and vice versa."""
        from_handlers = {
            (service, resolve_destination(event_name))
            for service, handlers in SERVICE_HANDLERS.items()
            for event_name in handlers
        }
        from_subscriptions = {
            (service, destination)
            for destination, services in SUBSCRIPTIONS.items()
            for service in services
        }
        assert from_handlers == from_subscriptions


class TestContracts:

    def test_round_trip_keeps_type_and_ids(self):
        event = PaymentFailedEvent(
            correlation_id="corr-1",
            data=PaymentFailedData(payment_id=uuid4(), booking_id=uuid4(), amount=Decimal("12.50"), reason="declined"),
        )

        parsed = parse_event(serialize_event(event))

        assert isinstance(parsed, PaymentFailedEvent)
        assert parsed.event_id == event.event_id
        assert parsed.data.booking_id == event.data.booking_id
        assert parsed.data.amount == Decimal("12.50")

    def test_wire_format_uses_camel_case(self):
        event = PaymentFailedEvent(
            data=PaymentFailedData(payment_id=uuid4(), booking_id=uuid4(), amount=Decimal("1"), reason="declined"),
        )
        body = json.loads(serialize_event(event))
        assert set(body) == {"eventId", "correlationId", "eventName", "timestamp", "data"}
        assert "paymentId" in body["data"]

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[1, 2]",
            b'{"eventName": "Unknown"}',
            b'{"eventName": "PaymentFailed", "data": {"bookingId": "not-a-uuid"}}',
        ],
    )
    def test_invalid_bodies_are_rejected(self, body):
        with pytest.raises(InvalidEventError):
            parse_event(body)


class TestRetryPolicies:

    def test_policy_classes(self):
        assert policy_for("inventory", "PaymentFailed") is COMPENSATING
        assert policy_for("inventory", "BookingCancelled") is COMPENSATING
        assert policy_for("inventory", "PaymentSucceeded") is INFORMATIONAL
        assert policy_for("payment", "BookingCreated") is FORWARD
        assert policy_for("booking", "SomethingNew") is FORWARD

    def test_budgets(self):
        assert FORWARD.max_attempts == 3
        assert COMPENSATING.max_attempts == 10
        assert INFORMATIONAL.max_attempts == 2
        assert INFORMATIONAL.on_exhausted is ExhaustionAction.LOG
        assert COMPENSATING.on_exhausted is ExhaustionAction.DEAD_LETTER

    def test_backoff_grows_and_is_capped(self):
        rng = random.Random(1)
        delays = [compute_backoff_seconds(a, base_seconds=1, max_seconds=10, rng=rng) for a in range(1, 8)]
        assert 0.8 <= delays[0] <= 1.2
        assert 1.6 <= delays[1] <= 2.4
        assert all(d <= 10 for d in delays)
        assert delays[-1] >= 8

    def test_backoff_without_jitter(self):
        assert compute_backoff_seconds(3, base_seconds=2, max_seconds=60, jitter=0) == 8

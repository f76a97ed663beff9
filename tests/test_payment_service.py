import random
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest

from app.core.errors import PaymentNotFoundError, PaymentRetryNotAllowedError
from app.models.payment import PaymentStatus
from app.services import payment_service
from app.services.payment_gateway import SimulatedPaymentGateway

from tests.helpers import outbox_events

APPROVE = SimulatedPaymentGateway(success_rate=1.0)
DECLINE = SimulatedPaymentGateway(success_rate=0.0)


class TestProcessPayment:

    @pytest.mark.asyncio
    async def test_approved_charge_emits_succeeded(self, db):
        booking_id = uuid4()
        with patch("app.services.payment_service.gateway", APPROVE):
            payment = await payment_service.process_payment(booking_id, Decimal("80.00"), correlation_id="corr-1")

        assert payment.status == PaymentStatus.SUCCESS
        assert payment.transaction_id.startswith("TXN-")
        events = await outbox_events("payment")
        assert [e["eventName"] for e in events] == ["PaymentSucceeded"]
        assert events[0]["data"]["transactionId"] == payment.transaction_id
        assert events[0]["correlationId"] == "corr-1"

    @pytest.mark.asyncio
    async def test_declined_charge_emits_failed(self, db):
        with patch("app.services.payment_service.gateway", DECLINE):
            payment = await payment_service.process_payment(uuid4(), Decimal("80.00"))

        assert payment.status == PaymentStatus.FAILED
        assert payment.error_message == "Payment processing failed"
        events = await outbox_events("payment")
        assert [e["eventName"] for e in events] == ["PaymentFailed"]
        assert events[0]["data"]["reason"] == "Payment processing failed"

    @pytest.mark.asyncio
    async def test_second_call_for_same_booking_does_not_charge_again(self, db):
        booking_id = uuid4()
        with patch("app.services.payment_service.gateway", APPROVE):
            first = await payment_service.process_payment(booking_id, Decimal("80.00"))
        with patch("app.services.payment_service.gateway", DECLINE):
            second = await payment_service.process_payment(booking_id, Decimal("80.00"))

        assert second.id == first.id
        assert second.status == PaymentStatus.SUCCESS
        assert len(await outbox_events("payment")) == 1

    @pytest.mark.asyncio
    async def test_non_positive_amount_is_refused(self, db):
        with pytest.raises(ValueError):
            await payment_service.process_payment(uuid4(), Decimal("0"))


class TestRetryPayment:

    @pytest.mark.asyncio
    async def test_retry_of_failed_payment_can_succeed(self, db):
        booking_id = uuid4()
        with patch("app.services.payment_service.gateway", DECLINE):
            await payment_service.process_payment(booking_id, Decimal("80.00"))
        with patch("app.services.payment_service.gateway", APPROVE):
            payment = await payment_service.retry_payment(booking_id)

        assert payment.status == PaymentStatus.SUCCESS
        assert payment.retry_count == 1
        assert payment.last_retry_at is not None
        events = await outbox_events("payment")
        assert [e["eventName"] for e in events] == ["PaymentFailed", "PaymentSucceeded"]

    @pytest.mark.asyncio
    async def test_retry_budget_ends_in_permanent_failure(self, db):
        booking_id = uuid4()
        with patch("app.services.payment_service.gateway", DECLINE):
            await payment_service.process_payment(booking_id, Decimal("80.00"))
            await payment_service.retry_payment(booking_id, max_retries=2)
            payment = await payment_service.retry_payment(booking_id, max_retries=2)

            assert payment.status == PaymentStatus.PERMANENTLY_FAILED
            with pytest.raises(PaymentRetryNotAllowedError):
                await payment_service.retry_payment(booking_id, max_retries=2)

    @pytest.mark.asyncio
    async def test_successful_payment_cannot_be_retried(self, db):
        booking_id = uuid4()
        with patch("app.services.payment_service.gateway", APPROVE):
            await payment_service.process_payment(booking_id, Decimal("80.00"))
            with pytest.raises(PaymentRetryNotAllowedError):
                await payment_service.retry_payment(booking_id)

    @pytest.mark.asyncio
    async def test_retry_of_unknown_payment(self, db):
        with pytest.raises(PaymentNotFoundError):
            await payment_service.retry_payment(uuid4())


class TestGateway:

    @pytest.mark.asyncio
    async def test_seeded_gateway_is_reproducible(self):
        gateway_a = SimulatedPaymentGateway(0.5, random.Random(7))
        gateway_b = SimulatedPaymentGateway(0.5, random.Random(7))
        results_a = [(await gateway_a.charge(uuid4(), Decimal("1"), "CREDIT_CARD")).success for _ in range(20)]
        results_b = [(await gateway_b.charge(uuid4(), Decimal("1"), "CREDIT_CARD")).success for _ in range(20)]
        assert results_a == results_b
        assert True in results_a and False in results_a

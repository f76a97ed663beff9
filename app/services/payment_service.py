"""
Payment service: charges a booking once and announces the outcome.

    PENDING --approved--> SUCCESS               (PaymentSucceeded)
    PENDING --declined--> FAILED                (PaymentFailed)
    FAILED  --retry, approved--> SUCCESS        (PaymentSucceeded)
    FAILED  --retry, declined--> FAILED, or PERMANENTLY_FAILED once the retry
                                 budget is spent (PaymentFailed)

The status change and its event are written in one transaction.
"""

import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from app.core.clock import utcnow
from app.core.config import PAYMENT_MAX_RETRIES
from app.core.db import atomic
from app.core.errors import PaymentNotFoundError, PaymentRetryNotAllowedError
from app.core.logging import get_correlation_id
from app.events.contracts import (
    PaymentFailedData,
    PaymentFailedEvent,
    PaymentSucceededData,
    PaymentSucceededEvent,
)
from app.models.payment import Payment, PaymentStatus
from app.outbox.writer import append
from app.services.payment_gateway import SimulatedPaymentGateway

log = logging.getLogger(__name__)

SERVICE = "payment"

gateway = SimulatedPaymentGateway()


async def get_payment(booking_id: UUID, conn: Any = None) -> Optional[Payment]:
    return await Payment.get_or_none(booking_id=booking_id).using_db(conn)


async def _charge(payment: Payment, correlation_id: Optional[str], conn: Any, max_retries: int) -> Payment:
    result = await gateway.charge(payment.booking_id, payment.amount, payment.payment_method)
    payment.processed_at = utcnow()

    if result.success:
        payment.status = PaymentStatus.SUCCESS
        payment.transaction_id = result.transaction_id
        payment.error_message = None
        event = PaymentSucceededEvent(
            correlation_id=correlation_id,
            data=PaymentSucceededData(
                payment_id=payment.id,
                booking_id=payment.booking_id,
                amount=payment.amount,
                transaction_id=result.transaction_id,
            ),
        )
    else:
        exhausted = payment.retry_count >= max_retries
        payment.status = PaymentStatus.PERMANENTLY_FAILED if exhausted else PaymentStatus.FAILED
        payment.error_message = result.error
        event = PaymentFailedEvent(
            correlation_id=correlation_id,
            data=PaymentFailedData(
                payment_id=payment.id,
                booking_id=payment.booking_id,
                amount=payment.amount,
                reason=result.error,
                status=payment.status.value,
            ),
        )

    await payment.save(
        update_fields=["status", "transaction_id", "error_message", "processed_at", "updated_at"],
        using_db=conn,
    )
    await append(event, service=SERVICE, conn=conn)
    log.info(f"Payment {payment.id} for booking {payment.booking_id}: {payment.status.value}")
    return payment


async def process_payment(
    booking_id: UUID,
    amount: Decimal,
    payment_method: str = "CREDIT_CARD",
    correlation_id: Optional[str] = None,
    conn: Any = None,
) -> Payment:
    """
    Charges a booking. Idempotent per booking: an existing payment is returned
    as is, without charging again or emitting another event.
    """
    if amount <= 0:
        raise ValueError("Amount must be greater than zero.")
    correlation_id = correlation_id or get_correlation_id()

    async with atomic(conn) as conn:
        existing = await get_payment(booking_id, conn)
        if existing:
            log.info(f"Payment for booking {booking_id} already exists ({existing.status.value}); skipping charge.")
            return existing

        payment = await Payment.create(
            booking_id=booking_id,
            amount=amount,
            payment_method=payment_method,
            status=PaymentStatus.PENDING,
            using_db=conn,
        )
        return await _charge(payment, correlation_id, conn, PAYMENT_MAX_RETRIES)


async def retry_payment(
    booking_id: UUID,
    correlation_id: Optional[str] = None,
    max_retries: int = PAYMENT_MAX_RETRIES,
) -> Payment:
    """Charges a FAILED payment again. Any other status is refused."""
    correlation_id = correlation_id or get_correlation_id()

    async with atomic() as conn:
        payment = await Payment.filter(booking_id=booking_id).using_db(conn).select_for_update().first()
        if not payment:
            raise PaymentNotFoundError(booking_id)
        if payment.status != PaymentStatus.FAILED:
            raise PaymentRetryNotAllowedError(
                f"Payment for booking {booking_id} is {payment.status.value}; only FAILED payments can be retried"
            )

        payment.retry_count += 1
        payment.last_retry_at = utcnow()
        payment.status = PaymentStatus.PENDING
        await payment.save(update_fields=["retry_count", "last_retry_at", "status", "updated_at"], using_db=conn)
        log.info(f"Retrying payment for booking {booking_id} (retry {payment.retry_count}/{max_retries})")
        return await _charge(payment, correlation_id, conn, max_retries)

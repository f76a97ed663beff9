import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException

from app.core.errors import PaymentNotFoundError
from app.models.payment import Payment
from app.schemas.payment import PaymentResponse
from app.schemas.response import SuccessResponse
from app.services import payment_service

router = APIRouter()
log = logging.getLogger(__name__)


def _payment(payment: Payment) -> dict:
    return PaymentResponse(
        id=payment.id,
        booking_id=payment.booking_id,
        amount=payment.amount,
        status=payment.status,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
        error_message=payment.error_message,
        retry_count=payment.retry_count,
        processed_at=str(payment.processed_at) if payment.processed_at else None,
    ).model_dump()


@router.get("/{booking_id}", response_model=SuccessResponse)
async def get_payment_endpoint(booking_id: UUID):
    try:
        payment = await payment_service.get_payment(booking_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        return SuccessResponse(data=_payment(payment))
    except HTTPException:
        raise
    except Exception as e:
        log.error(f"Error fetching payment for booking {booking_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch payment.")


@router.post("/{booking_id}/retry", response_model=SuccessResponse)
async def retry_payment_endpoint(booking_id: UUID):
    """Charges a FAILED payment again; the outcome is announced like the first attempt."""
    try:
        payment = await payment_service.retry_payment(booking_id)
        return SuccessResponse(data=_payment(payment))
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        log.error(f"Value error retrying payment: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error retrying payment: {e}")
        raise HTTPException(status_code=500, detail="Server failed to retry payment.")

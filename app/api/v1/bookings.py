import logging
from typing import Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Header, HTTPException, status

from app.core.logging import bind_correlation_id
from app.models.booking import Booking
from app.schemas.booking import (
    BookingAcceptedResponse,
    BookingCancelRequest,
    BookingDetailResponse,
    BookingRequest,
)
from app.schemas.response import SuccessResponse
from app.services import booking_service

router = APIRouter()
log = logging.getLogger(__name__)


def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _booking_detail(booking: Booking) -> dict:
    return BookingDetailResponse(
        id=booking.id,
        user_id=booking.user_id,
        room_id=booking.room_id,
        amount=booking.amount,
        status=booking.status,
        cancellation_reason=booking.cancellation_reason,
        created_at=str(booking.created_at),
        confirmed_at=_optional_str(booking.confirmed_at),
        cancelled_at=_optional_str(booking.cancelled_at),
    ).model_dump()


@router.post("/", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def create_booking_endpoint(
    request_data: BookingRequest,
    x_correlation_id: Optional[str] = Header(default=None),
):
    """
    Creates a booking. Returns 202 Accepted because inventory and payment
    outcomes arrive asynchronously through events.
    """
    correlation_id = x_correlation_id or uuid4().hex
    try:
        with bind_correlation_id(correlation_id):
            booking = await booking_service.create_booking(
                user_id=request_data.user_id,
                room_id=request_data.room_id,
                amount=request_data.amount,
                correlation_id=correlation_id,
            )
        data = BookingAcceptedResponse(
            booking_id=booking.id,
            status=booking.status,
            amount=booking.amount,
            correlation_id=correlation_id,
            message="Booking accepted and is being processed.",
        ).model_dump()
        return SuccessResponse(data=data)
    except ValueError as e:
        log.error(f"Value error creating booking: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error creating booking: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create booking.")


@router.get("/{booking_id}", response_model=SuccessResponse)
async def get_booking_endpoint(booking_id: UUID):
    """Fetches details for a specific booking."""
    try:
        booking = await booking_service.get_booking(booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return SuccessResponse(data=_booking_detail(booking))
    except HTTPException:
        raise
    except Exception as e:
        log.error(f"Error fetching booking {booking_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch booking details.")


@router.get("/user/{user_id}", response_model=SuccessResponse)
async def list_user_bookings_endpoint(user_id: str):
    try:
        bookings = await booking_service.list_bookings_for_user(user_id)
        return SuccessResponse(data=[_booking_detail(b) for b in bookings])
    except Exception as e:
        log.error(f"Error listing bookings for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to list bookings.")


@router.post("/{booking_id}/cancel", response_model=SuccessResponse)
async def cancel_booking_endpoint(booking_id: UUID, payload: Optional[BookingCancelRequest] = None):
    """
    Cancels a PENDING booking and emits BookingCancelled so inventory releases
    the room asynchronously.
    """
    reason = payload.reason if payload else "Cancelled by user"
    try:
        booking = await booking_service.cancel_booking(booking_id, reason)
        return SuccessResponse(data=_booking_detail(booking))
    except ValueError as e:
        log.error(f"Value error cancelling booking: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error cancelling booking: {e}")
        raise HTTPException(status_code=500, detail="Server failed to cancel booking.")

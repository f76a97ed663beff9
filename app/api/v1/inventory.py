import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from app.core.errors import InventoryItemNotFoundError, ReservationNotFoundError
from app.models.inventory import InventoryItem, InventoryReservation
from app.schemas.inventory import (
    AvailabilityResponse,
    InventoryItemRequest,
    InventoryResponse,
    ReleaseRequest,
    ReservationRequest,
    ReservationResponse,
)
from app.schemas.response import SuccessResponse
from app.services import inventory_service

log = logging.getLogger(__name__)

router = APIRouter()


def _item(item: InventoryItem) -> dict:
    return InventoryResponse(
        item_id=item.item_id,
        name=item.name,
        total_quantity=item.total_quantity,
        available_quantity=item.available_quantity,
        reserved_quantity=item.reserved_quantity,
        updated_at=str(item.updated_at),
    ).model_dump()


def _reservation(reservation: InventoryReservation) -> dict:
    return ReservationResponse(
        id=reservation.id,
        booking_id=reservation.booking_id,
        quantity=reservation.quantity,
        status=reservation.status,
        expires_at=str(reservation.expires_at),
        confirmed_at=str(reservation.confirmed_at) if reservation.confirmed_at else None,
        released_at=str(reservation.released_at) if reservation.released_at else None,
        release_reason=reservation.release_reason,
    ).model_dump()


@router.post("/items", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_inventory_item(item_data: InventoryItemRequest):
    """Adds a new inventory item with its initial stock."""
    try:
        item = await inventory_service.create_item(item_data.item_id, item_data.name, item_data.total_quantity)
        return SuccessResponse(data=_item(item))
    except ValueError as e:
        log.error(f"Value error adding inventory item: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error adding inventory item: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server failed to add inventory item.",
        )


@router.get("/items", response_model=SuccessResponse)
async def list_inventory_items():
    try:
        items = await inventory_service.list_items()
        return SuccessResponse(data=[_item(item) for item in items])
    except Exception as e:
        log.error(f"Error listing inventory: {e}")
        raise HTTPException(status_code=500, detail="Server failed to list inventory.")


@router.get("/items/{item_id}", response_model=SuccessResponse)
async def get_inventory_stock(item_id: str):
    """Fetches the stock levels of one item."""
    try:
        item = await inventory_service.get_item(item_id)
        return SuccessResponse(data=_item(item))
    except InventoryItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        log.error(f"Error fetching inventory: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch inventory.")


@router.get("/items/{item_id}/availability", response_model=SuccessResponse)
async def check_availability_endpoint(item_id: str, quantity: int = 1):
    try:
        availability = await inventory_service.check_availability(item_id, quantity)
        return SuccessResponse(data=AvailabilityResponse(**availability).model_dump())
    except InventoryItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        log.error(f"Error checking availability: {e}")
        raise HTTPException(status_code=500, detail="Server failed to check availability.")


@router.post("/reservations", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def reserve_endpoint(request_data: ReservationRequest):
    """Reserves stock for a booking. Calling it again for the same booking returns the same reservation."""
    try:
        reservation = await inventory_service.reserve(
            request_data.booking_id, request_data.item_id, request_data.quantity
        )
        return SuccessResponse(data=_reservation(reservation))
    except ValueError as e:
        log.error(f"Value error reserving inventory: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error reserving inventory: {e}")
        raise HTTPException(status_code=500, detail="Server failed to reserve inventory.")


@router.get("/reservations/{booking_id}", response_model=SuccessResponse)
async def get_reservation_endpoint(booking_id: UUID):
    try:
        reservation = await inventory_service.get_reservation(booking_id)
        if not reservation:
            raise HTTPException(status_code=404, detail="Reservation not found")
        return SuccessResponse(data=_reservation(reservation))
    except HTTPException:
        raise
    except Exception as e:
        log.error(f"Error fetching reservation for booking {booking_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch reservation.")


@router.post("/reservations/{booking_id}/release", response_model=SuccessResponse)
async def release_endpoint(booking_id: UUID, payload: ReleaseRequest):
    try:
        reservation = await inventory_service.release(booking_id, payload.reason)
        return SuccessResponse(data=_reservation(reservation))
    except ReservationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        log.error(f"Value error releasing reservation: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error releasing reservation: {e}")
        raise HTTPException(status_code=500, detail="Server failed to release reservation.")

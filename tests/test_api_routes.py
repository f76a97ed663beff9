import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock, MagicMock
from uuid import uuid4

from app.core.errors import InsufficientInventoryError, InvalidBookingStateError, PaymentRetryNotAllowedError
from app.main import app
from app.models.booking import BookingStatus
from app.models.inventory import ReservationStatus


@pytest.fixture
def client():
    return TestClient(app)


def _mock_booking(status=BookingStatus.PENDING):
    mock_booking = MagicMock()
    mock_booking.id = uuid4()
    mock_booking.user_id = "user-1"
    mock_booking.room_id = "ROOM-101"
    mock_booking.amount = Decimal("120.00")
    mock_booking.status = status
    mock_booking.cancellation_reason = None
    mock_booking.created_at = "2026-10-19T10:30:00"
    mock_booking.confirmed_at = None
    mock_booking.cancelled_at = None
    return mock_booking


class TestBookingRoutes:
    def test_create_booking_success(self, client):
        """Test booking creation returns 202"""
        with patch('app.api.v1.bookings.booking_service.create_booking', new_callable=AsyncMock) as mock_create:
            mock_create.return_value = _mock_booking()

            response = client.post(
                "/api/v1/bookings/",
                json={"user_id": "user-1", "room_id": "ROOM-101", "amount": "120.00"},
                headers={"X-Correlation-ID": "corr-42"},
            )

            assert response.status_code == 202
            assert response.json()["data"]["status"] == "PENDING"
            assert response.json()["data"]["correlation_id"] == "corr-42"
            assert mock_create.await_args.kwargs["correlation_id"] == "corr-42"

    def test_create_booking_rejects_non_positive_amount(self, client):
        """Test validation for the amount"""
        response = client.post(
            "/api/v1/bookings/", json={"user_id": "user-1", "room_id": "ROOM-101", "amount": "0"}
        )
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "validation_error"
        detail = body["error"]["details"][0]
        assert detail["loc"] == ["body", "amount"]
        assert detail["ctx"]["gt"] in ("0", 0)

    def test_get_booking_success(self, client):
        """Test booking retrieval"""
        with patch('app.api.v1.bookings.booking_service.get_booking', new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _mock_booking(BookingStatus.CONFIRMED)

            response = client.get(f"/api/v1/bookings/{uuid4()}")
            assert response.status_code == 200
            assert response.json()["data"]["status"] == "CONFIRMED"

    def test_get_booking_not_found(self, client):
        with patch('app.api.v1.bookings.booking_service.get_booking', new_callable=AsyncMock) as mock_get:
            mock_get.return_value = None

            response = client.get(f"/api/v1/bookings/{uuid4()}")
            assert response.status_code == 404

    def test_cancel_confirmed_booking_is_rejected(self, client):
        with patch('app.api.v1.bookings.booking_service.cancel_booking', new_callable=AsyncMock) as mock_cancel:
            mock_cancel.side_effect = InvalidBookingStateError("Cannot cancel booking in status CONFIRMED")

            response = client.post(f"/api/v1/bookings/{uuid4()}/cancel", json={"reason": "changed plans"})
            assert response.status_code == 400


class TestInventoryRoutes:
    def test_reserve_insufficient_inventory_is_400(self, client):
        with patch('app.api.v1.inventory.inventory_service.reserve', new_callable=AsyncMock) as mock_reserve:
            mock_reserve.side_effect = InsufficientInventoryError("ROOM-101", 0, 1)

            response = client.post(
                "/api/v1/inventory/reservations",
                json={"booking_id": str(uuid4()), "item_id": "ROOM-101", "quantity": 1},
            )
            assert response.status_code == 400
            assert "Insufficient inventory for ROOM-101" in response.json()["error"]["message"]

    def test_reserve_success(self, client):
        reservation = MagicMock()
        reservation.id = uuid4()
        reservation.booking_id = uuid4()
        reservation.quantity = 1
        reservation.status = ReservationStatus.RESERVED
        reservation.expires_at = "2026-10-19T10:45:00+00:00"
        reservation.confirmed_at = None
        reservation.released_at = None
        reservation.release_reason = None

        with patch('app.api.v1.inventory.inventory_service.reserve', new_callable=AsyncMock) as mock_reserve:
            mock_reserve.return_value = reservation

            response = client.post(
                "/api/v1/inventory/reservations",
                json={"booking_id": str(reservation.booking_id), "item_id": "ROOM-101"},
            )
            assert response.status_code == 201
            assert response.json()["data"]["status"] == "RESERVED"


class TestPaymentRoutes:
    def test_retry_not_allowed_is_400(self, client):
        with patch('app.api.v1.payments.payment_service.retry_payment', new_callable=AsyncMock) as mock_retry:
            mock_retry.side_effect = PaymentRetryNotAllowedError("only FAILED payments can be retried")

            response = client.post(f"/api/v1/payments/{uuid4()}/retry")
            assert response.status_code == 400


class TestDeadLetterRoutes:
    def test_count_unresolved(self, client):
        with patch('app.api.v1.dead_letters.store.count_unresolved', new_callable=AsyncMock) as mock_count:
            mock_count.return_value = 3

            response = client.get("/api/v1/dead-letters/count")
            assert response.status_code == 200
            assert response.json()["data"]["unresolved"] == 3

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch, MagicMock
from uuid import UUID
from app.core.errors import InvalidBookingStateError
from app.models.booking import Booking, BookingStatus
from app.services.booking_service import cancel_booking, confirm_booking, create_booking

# --- CORE MOCKING UTILITIES ---

class AsyncContextManagerMock:
    """Mocks 'async with in_transaction() as conn:' to fulfill the async context manager protocol."""
    async def __aenter__(self):
        # Returns a mock connection object
        return object()
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

def create_mock_queryset(final_return_value):
    """
    FACTORY: Creates a mock object that supports method chaining like Tortoise ORM.
    Chaining methods (using_db, select_for_update) return the mock itself,
    and the terminal .first() is awaitable, returning the final data.
    """
    chainable_mock = MagicMock()
    chainable_mock.using_db.return_value = chainable_mock
    chainable_mock.select_for_update.return_value = chainable_mock
    chainable_mock.first = AsyncMock(return_value=final_return_value)
    return chainable_mock

def _mock_booking(status):
    mock_booking = AsyncMock()
    mock_booking.id = UUID("d675f4f3-6c36-46b9-abcf-ba0aa3c60a5e")
    mock_booking.user_id = "user-abc"
    mock_booking.room_id = "ROOM-101"
    mock_booking.amount = Decimal("120.00")
    mock_booking.status = status
    mock_booking.save = AsyncMock()
    return mock_booking

# --- SETUP FIXTURES (Using the Factory) ---

@pytest.fixture
def mock_booking_pending():
    """Mock Booking still waiting on inventory and payment outcomes."""
    return _mock_booking(BookingStatus.PENDING)

@pytest.fixture
def mock_booking_confirmed():
    """Mock Booking in a final state (CONFIRMED) that should block cancellation."""
    return _mock_booking(BookingStatus.CONFIRMED)

# --- TESTS ---

@pytest.mark.asyncio
@patch('app.services.booking_service.in_transaction', new_callable=MagicMock)
@patch('app.services.booking_service.append', new_callable=AsyncMock)
async def test_create_booking_appends_booking_created(mock_append, mock_in_transaction, mock_booking_pending):
    """
    Test case 1: The booking row and its BookingCreated event share one transaction.
    """
    mock_in_transaction.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'create', AsyncMock(return_value=mock_booking_pending)):
        booking = await create_booking("user-abc", "ROOM-101", Decimal("120.00"), correlation_id="corr-1")

    assert booking.status == BookingStatus.PENDING
    mock_append.assert_called_once()
    args, kwargs = mock_append.call_args
    event = args[0]
    assert event.event_name == "BookingCreated"
    assert event.correlation_id == "corr-1"
    assert event.data.booking_id == mock_booking_pending.id
    assert event.data.room_id == "ROOM-101"
    assert kwargs['service'] == "booking"


@pytest.mark.asyncio
@patch('app.services.booking_service.in_transaction', new_callable=MagicMock)
@patch('app.services.booking_service.append', new_callable=AsyncMock)
async def test_create_booking_rejects_non_positive_amount(mock_append, mock_in_transaction):
    with pytest.raises(ValueError):
        await create_booking("user-abc", "ROOM-101", Decimal("0"))

    mock_in_transaction.assert_not_called()
    mock_append.assert_not_called()


@pytest.mark.asyncio
@patch('app.services.booking_service.atomic', new_callable=MagicMock)
@patch('app.services.booking_service.append', new_callable=AsyncMock)
async def test_cancel_pending_booking_emits_compensation_event(mock_append, mock_atomic, mock_booking_pending):
    """
    Test case 2: PENDING -> CANCELLED, announcing BookingCancelled for inventory.
    """
    mock_atomic.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'filter', MagicMock(return_value=create_mock_queryset(mock_booking_pending))):
        booking = await cancel_booking(mock_booking_pending.id, "Cancelled by user", correlation_id="corr-2")

    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "Cancelled by user"
    mock_booking_pending.save.assert_called_once()
    mock_append.assert_called_once()
    event = mock_append.call_args.args[0]
    assert event.event_name == "BookingCancelled"
    assert event.data.reason == "Cancelled by user"
    assert event.correlation_id == "corr-2"


@pytest.mark.asyncio
@patch('app.services.booking_service.atomic', new_callable=MagicMock)
@patch('app.services.booking_service.append', new_callable=AsyncMock)
async def test_cancel_without_event(mock_append, mock_atomic, mock_booking_pending):
    mock_atomic.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'filter', MagicMock(return_value=create_mock_queryset(mock_booking_pending))):
        booking = await cancel_booking(mock_booking_pending.id, "Payment failed", emit_event=False)

    assert booking.status == BookingStatus.CANCELLED
    mock_append.assert_not_called()


@pytest.mark.asyncio
@patch('app.services.booking_service.atomic', new_callable=MagicMock)
@patch('app.services.booking_service.append', new_callable=AsyncMock)
async def test_rejection_of_cancelling_confirmed_booking(mock_append, mock_atomic, mock_booking_confirmed):
    """
    Test case 3: Cancelling a CONFIRMED booking raises a ValueError subclass
    and no DB/Event operations occur.
    """
    mock_atomic.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'filter', MagicMock(return_value=create_mock_queryset(mock_booking_confirmed))):
        with pytest.raises(ValueError) as excinfo:
            await cancel_booking(mock_booking_confirmed.id, "too late")

    assert isinstance(excinfo.value, InvalidBookingStateError)
    assert "CONFIRMED" in str(excinfo.value)
    mock_booking_confirmed.save.assert_not_called()
    mock_append.assert_not_called()


@pytest.mark.asyncio
@patch('app.services.booking_service.atomic', new_callable=MagicMock)
async def test_confirm_pending_booking(mock_atomic, mock_booking_pending):
    mock_atomic.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'filter', MagicMock(return_value=create_mock_queryset(mock_booking_pending))):
        booking = await confirm_booking(mock_booking_pending.id)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.confirmed_at is not None
    mock_booking_pending.save.assert_called_once()


@pytest.mark.asyncio
@patch('app.services.booking_service.atomic', new_callable=MagicMock)
async def test_confirm_is_idempotent(mock_atomic, mock_booking_confirmed):
    mock_atomic.return_value = AsyncContextManagerMock()

    with patch.object(Booking, 'filter', MagicMock(return_value=create_mock_queryset(mock_booking_confirmed))):
        booking = await confirm_booking(mock_booking_confirmed.id)

    assert booking.status == BookingStatus.CONFIRMED
    mock_booking_confirmed.save.assert_not_called()

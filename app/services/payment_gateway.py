import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from app.core.config import PAYMENT_SUCCESS_RATE

log = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class SimulatedPaymentGateway:
    """Stands in for a card processor: approves a configurable share of charges."""

    def __init__(self, success_rate: float = PAYMENT_SUCCESS_RATE, rng: Optional[random.Random] = None):
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    async def charge(self, booking_id, amount: Decimal, payment_method: str) -> GatewayResult:
        if self._rng.random() < self.success_rate:
            transaction_id = f"TXN-{uuid4().hex[:16].upper()}"
            log.info(f"Gateway approved {amount} ({payment_method}) for booking {booking_id}: {transaction_id}")
            return GatewayResult(success=True, transaction_id=transaction_id)

        log.info(f"Gateway declined {amount} ({payment_method}) for booking {booking_id}")
        return GatewayResult(success=False, error="Payment processing failed")

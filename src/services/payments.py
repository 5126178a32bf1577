"""
Payment gateway collaborator.

Only refunds go through here; charging happens in the booking-creation flow
and arrives as a recorded payment result.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from src.domain.entities import Booking


@dataclass(frozen=True)
class RefundReceipt:
    success: bool
    amount: float
    refund_id: Optional[str] = None
    error: Optional[str] = None


class PaymentGateway(ABC):
    """Interface for refund providers."""

    @abstractmethod
    async def refund(self, booking: Booking, amount: float) -> RefundReceipt:
        ...


class ManualRefundGateway(PaymentGateway):
    """
    Records the refund for settlement by the finance team.

    Always accepts; the receipt id lets the operator match the payout later.
    """

    async def refund(self, booking: Booking, amount: float) -> RefundReceipt:
        refund_id = f"refund_{booking.code or booking.id}_{int(time.time())}"
        return RefundReceipt(success=True, amount=amount, refund_id=refund_id)

"""
Simulated payment gateway.

Stands in for the card / mobile-money provider until a real integration is
wired.  References listed in ``fail_references`` are declined; everything
else succeeds with a generated transaction id.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Iterable, Optional

from ridecore.domain.enums import PaymentMethod
from ridecore.domain.ports import GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)


class SimulatedPaymentGateway(PaymentGateway):
    def __init__(
        self,
        latency_seconds: float = 0.0,
        fail_references: Optional[Iterable[str]] = None,
    ):
        self.latency = latency_seconds
        self.fail_references = set(fail_references or ())

    async def charge(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult:
        return await self._respond("CHG", amount, method, reference)

    async def refund(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult:
        return await self._respond("REF", amount, method, reference)

    async def _respond(
        self, prefix: str, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult:
        if self.latency:
            await asyncio.sleep(self.latency)
        if reference in self.fail_references:
            logger.info("Gateway declined %s %s via %s", reference, amount, method.value)
            return GatewayResult(success=False, message="Payment gateway temporarily unavailable")
        return GatewayResult(
            success=True, transaction_id=f"{prefix}-{uuid.uuid4().hex[:12].upper()}"
        )

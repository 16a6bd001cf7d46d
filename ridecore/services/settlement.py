"""
Bounded gateway calls.

Every call to the external gateway gets a timeout and a fixed number of
attempts with exponential backoff.  When the attempts run out the caller
receives ``GatewayError`` and records a failed payment for reconciliation;
nothing is retried forever.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable

from ridecore.domain.enums import PaymentMethod
from ridecore.domain.errors import GatewayError
from ridecore.domain.ports import GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)

GatewayOp = Callable[[Decimal, PaymentMethod, str], Awaitable[GatewayResult]]


class GatewayCaller:
    def __init__(
        self,
        gateway: PaymentGateway,
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.timeout = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff_seconds
        self._sleep = sleep

    async def charge(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult:
        return await self._call("charge", self.gateway.charge, amount, method, reference)

    async def refund(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult:
        return await self._call("refund", self.gateway.refund, amount, method, reference)

    async def _call(
        self,
        op_name: str,
        op: GatewayOp,
        amount: Decimal,
        method: PaymentMethod,
        reference: str,
    ) -> GatewayResult:
        reason = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await asyncio.wait_for(
                    op(amount, method, reference), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                reason = f"timed out after {self.timeout}s"
            except GatewayError as exc:
                reason = str(exc)
            else:
                if result.success:
                    return result
                reason = result.message or "declined"

            if attempt < self.max_attempts:
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Gateway %s for %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    op_name, reference, attempt, self.max_attempts, reason, delay,
                )
                await self._sleep(delay)

        raise GatewayError(
            f"Gateway {op_name} for {reference} failed after "
            f"{self.max_attempts} attempts: {reason}"
        )

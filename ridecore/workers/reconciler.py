"""
Background Reconciliation Worker
================================

Runs every ``reconcile_interval_seconds`` (default 60 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the cycle at a
  time across multiple API processes.
* Each ride is retried through ``RideLifecycle`` and therefore under its
  own ``ride:<id>`` lock, so a cycle never races a live request.

Work per cycle
--------------
1. Completed rides whose payment is ``pending`` or ``failed``: re-run
   settlement.
2. Cancelled rides with an outstanding refund: process the refund, unless
   the active policy has ``auto_refund`` disabled.

Rides that have failed ``reconcile_max_attempts`` times are no longer picked
up; they stay ``failed`` for manual reconciliation (``POST /rides/{id}/settle``
and ``/refund`` still work).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ridecore.config import settings
from ridecore.domain.enums import PaymentStatus
from ridecore.domain.errors import RideCoreError
from ridecore.infrastructure.database import async_session_factory
from ridecore.infrastructure.locks import DistributedLock
from ridecore.infrastructure.redis_client import get_redis
from ridecore.infrastructure.wiring import build_lifecycle
from ridecore.services.ride_lifecycle import RideLifecycle

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class ReconcileResult:
    settled: int = 0
    still_failing: int = 0
    refunded: int = 0
    refunds_failing: int = 0
    exhausted: int = 0  # hit the attempt limit during this pass


# ── Public API ────────────────────────────────────────────────────────


async def start_reconcile_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Reconciler started (interval=%ds)", settings.reconcile_interval_seconds
    )


async def stop_reconcile_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Reconciler stopped")


async def reconcile(
    lifecycle: RideLifecycle,
    limit: int = 100,
    max_attempts: Optional[int] = None,
) -> ReconcileResult:
    """Retry unsettled payments and outstanding refunds once."""
    result = ReconcileResult()

    for ride in await lifecycle.rides.find_unsettled(limit, max_attempts):
        try:
            ride = await lifecycle.retry_settlement(ride.id)
        except RideCoreError as exc:
            logger.warning("Reconcile: settlement of ride %s failed: %s", ride.id, exc)
            result.still_failing += 1
            continue
        if ride.payment.status == PaymentStatus.PAID:
            result.settled += 1
            continue
        result.still_failing += 1
        if _exhausted(ride.payment.settlement_attempts, max_attempts):
            logger.error(
                "Reconcile: settlement of ride %s failed %d times, "
                "left for manual reconciliation",
                ride.id, ride.payment.settlement_attempts,
            )
            result.exhausted += 1

    policy = await lifecycle.policies.get_active()
    if policy is not None and not policy.auto_refund.enabled:
        logger.info("Reconcile: auto refunds disabled by policy %s", policy.name)
        return result

    for ride in await lifecycle.rides.find_refundable(limit, max_attempts):
        try:
            ride = await lifecycle.process_refund(ride.id)
        except RideCoreError as exc:
            logger.warning("Reconcile: refund of ride %s failed: %s", ride.id, exc)
            result.refunds_failing += 1
            continue
        if ride.cancellation and ride.cancellation.is_refund_processed:
            result.refunded += 1
            continue
        result.refunds_failing += 1
        if ride.cancellation and _exhausted(ride.cancellation.refund_attempts, max_attempts):
            logger.error(
                "Reconcile: refund of ride %s failed %d times, "
                "left for manual reconciliation",
                ride.id, ride.cancellation.refund_attempts,
            )
            result.exhausted += 1

    return result


# ── Internals ─────────────────────────────────────────────────────────


def _exhausted(attempts: int, max_attempts: Optional[int]) -> bool:
    return max_attempts is not None and attempts >= max_attempts


async def _loop() -> None:
    """Periodic loop: run a reconcile cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconcile_cycle()
        except Exception:
            logger.exception("Unhandled error in reconcile cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconcile_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_reconcile_cycle() -> ReconcileResult:
    """Execute one cycle against the database under the worker lock."""
    redis = await get_redis()
    lock = DistributedLock(redis, "reconciler", ttl_seconds=settings.reconcile_interval_seconds)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return ReconcileResult()

    result = ReconcileResult()
    try:
        async with async_session_factory() as session:
            result = await reconcile(
                build_lifecycle(session, redis),
                max_attempts=settings.reconcile_max_attempts,
            )
            await session.commit()
        if result.settled or result.refunded:
            logger.info(
                "Reconcile cycle: %d settled, %d refunded (%d / %d still failing)",
                result.settled, result.refunded,
                result.still_failing, result.refunds_failing,
            )
    except Exception:
        logger.exception("Error in reconcile cycle")
    finally:
        await lock.release()

    return result

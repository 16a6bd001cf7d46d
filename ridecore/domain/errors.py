"""
Error taxonomy for the ride core.

Callers always receive the concrete reason so the surrounding application
can tell "insufficient funds" from "invalid state" from "gateway failure".
``GatewayError`` is retried locally a bounded number of times.  Settlement
after completion and refunds after cancellation record any ``RideCoreError``
on the ride instead of raising it, because the state change is already
committed.  Everything else propagates unchanged.
"""

from __future__ import annotations

from decimal import Decimal


class RideCoreError(Exception):
    """Base class for every error raised by the core."""


class ValidationError(RideCoreError):
    """Bad input, rejected before any mutation."""


class NotFound(RideCoreError):
    pass


class RideNotFound(NotFound):
    def __init__(self, ride_id: str):
        super().__init__(f"Ride {ride_id} not found")
        self.ride_id = ride_id


# ── State errors ──────────────────────────────────────────────────────


class StateError(RideCoreError):
    """The aggregate is not in a state that allows the operation."""


class InvalidTransition(StateError):
    """Raised when a ride status change violates the state machine."""


class AlreadyTerminal(StateError):
    """The ride is already completed or cancelled."""


class RideNotPending(StateError):
    pass


class DriverUnavailable(StateError):
    pass


# ── Money ─────────────────────────────────────────────────────────────


class InsufficientFunds(RideCoreError):
    def __init__(self, user_id: str, requested: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient funds for {user_id}: requested {requested}, "
            f"available {available}"
        )
        self.user_id = user_id
        self.requested = requested
        self.available = available


class GatewayError(RideCoreError):
    """Transient payment-gateway failure (timeout, decline, outage)."""


class PolicyMissing(RideCoreError):
    """No active cancellation policy; cancellation must not guess a default."""


# ── Concurrency ───────────────────────────────────────────────────────


class ConcurrencyError(RideCoreError):
    pass


class ConcurrentModification(ConcurrencyError):
    """A stale write lost the optimistic-version race."""


class LockTimeout(ConcurrencyError):
    """A per-aggregate lock could not be acquired in time."""

"""
Ports -- abstract collaborators the core depends on.

The services receive implementations by injection: SQL / Redis adapters
live in ``infrastructure.repositories`` and ``infrastructure.events``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncContextManager, Optional

from .entities import CancellationPolicy, Ride, Wallet, WalletTransaction
from .enums import CancelledBy, PaymentMethod
from .events import PaymentEvent, RideStateChanged
from .pricing import DemandContext


# ── External collaborators ────────────────────────────────────────────


@dataclass(frozen=True)
class UserRecord:
    exists: bool
    is_available: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DirectoryService(ABC):
    """Driver / passenger directory owned by another service."""

    @abstractmethod
    async def get_user(self, user_id: str) -> UserRecord: ...

    @abstractmethod
    async def set_availability(self, driver_id: str, available: bool) -> None: ...

    @abstractmethod
    async def record_trip(self, driver_id: str, earnings: Decimal) -> None: ...

    @abstractmethod
    async def record_cancellation(
        self, user_id: str, role: CancelledBy, penalty: Decimal
    ) -> None: ...


class DemandSignalProvider(ABC):
    @abstractmethod
    async def get_demand_context(self, area: str) -> Optional[DemandContext]: ...


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    message: str = ""


class PaymentGateway(ABC):
    """Card / mobile-money gateway.  The core only records the outcome."""

    @abstractmethod
    async def charge(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult: ...

    @abstractmethod
    async def refund(
        self, amount: Decimal, method: PaymentMethod, reference: str
    ) -> GatewayResult: ...


class EventSink(ABC):
    @abstractmethod
    async def publish(self, event: RideStateChanged | PaymentEvent) -> None: ...


class LockProvider(ABC):
    """Serializes mutation per aggregate key (``ride:<id>``, ``wallet:<user>``)."""

    @abstractmethod
    def lock(self, key: str) -> AsyncContextManager[None]: ...


# ── Repositories ──────────────────────────────────────────────────────


class RideRepository(ABC):
    @abstractmethod
    async def add(self, ride: Ride) -> Ride: ...

    @abstractmethod
    async def get(self, ride_id: str) -> Optional[Ride]: ...

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Ride]: ...

    @abstractmethod
    async def save(self, ride: Ride) -> Ride:
        """Persist *ride* if its version is current, then bump the version.

        Raises ``ConcurrentModification`` on a stale write.
        """

    @abstractmethod
    async def find_unsettled(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        """Completed rides whose payment is still pending or failed.

        With *max_attempts*, rides that already failed that many times are
        left out; they wait for manual reconciliation.
        """

    @abstractmethod
    async def find_refundable(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        """Cancelled rides with an outstanding refund, bounded like ``find_unsettled``."""

    @abstractmethod
    async def count_pending(self, area: Optional[str] = None) -> int: ...


class WalletRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[Wallet]: ...

    @abstractmethod
    async def create(self, wallet: Wallet) -> Wallet: ...

    @abstractmethod
    async def append(self, wallet: Wallet, transaction: WalletTransaction) -> None:
        """Atomically store *transaction* and the wallet's new balance."""


class PolicyRepository(ABC):
    @abstractmethod
    async def get_active(self) -> Optional[CancellationPolicy]: ...

    @abstractmethod
    async def activate(self, policy: CancellationPolicy) -> CancellationPolicy:
        """Store *policy* as the single active policy, deactivating the rest."""

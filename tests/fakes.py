"""
In-memory adapters for every port, used by the service tests.

Stored aggregates are deep-copied on the way in and out so callers only ever
change state through ``save`` / ``append``, exactly like a real store,
and the optimistic version check behaves the same way.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from ridecore.domain.entities import CancellationPolicy, Ride, Wallet, WalletTransaction
from ridecore.domain.enums import (
    CancelledBy,
    PaymentStatus,
    RefundStatus,
    RideStatus,
)
from ridecore.domain.errors import ConcurrentModification
from ridecore.domain.events import PaymentEvent, RideStateChanged
from ridecore.domain.money import ZERO
from ridecore.domain.ports import (
    DemandSignalProvider,
    DirectoryService,
    EventSink,
    PolicyRepository,
    RideRepository,
    UserRecord,
    WalletRepository,
)
from ridecore.domain.pricing import DemandContext

UNSETTLED = (PaymentStatus.PENDING, PaymentStatus.FAILED)
OPEN_REFUND = (RefundStatus.PENDING, RefundStatus.FAILED)


class InMemoryRideRepository(RideRepository):
    def __init__(self):
        self._rides: dict[str, Ride] = {}

    async def add(self, ride: Ride) -> Ride:
        self._rides[ride.id] = copy.deepcopy(ride)
        return ride

    async def get(self, ride_id: str) -> Optional[Ride]:
        ride = self._rides.get(ride_id)
        return copy.deepcopy(ride) if ride else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Ride]:
        for ride in self._rides.values():
            if ride.idempotency_key == key:
                return copy.deepcopy(ride)
        return None

    async def save(self, ride: Ride) -> Ride:
        stored = self._rides.get(ride.id)
        if stored is None or stored.version != ride.version:
            raise ConcurrentModification(f"Ride {ride.id} was modified concurrently")
        ride.version += 1
        self._rides[ride.id] = copy.deepcopy(ride)
        return ride

    async def find_unsettled(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        rides = [
            r for r in self._rides.values()
            if r.status == RideStatus.COMPLETED
            and r.payment.status in UNSETTLED
            and r.payment.amount > ZERO
            and (max_attempts is None or r.payment.settlement_attempts < max_attempts)
        ]
        return [copy.deepcopy(r) for r in rides[:limit]]

    async def find_refundable(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        rides = [
            r for r in self._rides.values()
            if r.status == RideStatus.CANCELLED
            and r.cancellation is not None
            and not r.cancellation.is_refund_processed
            and r.cancellation.refund_status in OPEN_REFUND
            and (max_attempts is None or r.cancellation.refund_attempts < max_attempts)
        ]
        return [copy.deepcopy(r) for r in rides[:limit]]

    async def count_pending(self, area: Optional[str] = None) -> int:
        return sum(
            1 for r in self._rides.values()
            if r.status == RideStatus.PENDING
            and (area is None or r.pickup_cell == area)
        )


class InMemoryWalletRepository(WalletRepository):
    def __init__(self):
        self._wallets: dict[str, Wallet] = {}

    async def get(self, user_id: str) -> Optional[Wallet]:
        wallet = self._wallets.get(user_id)
        return copy.deepcopy(wallet) if wallet else None

    async def create(self, wallet: Wallet) -> Wallet:
        self._wallets.setdefault(wallet.user_id, copy.deepcopy(wallet))
        return copy.deepcopy(self._wallets[wallet.user_id])

    async def append(self, wallet: Wallet, transaction: WalletTransaction) -> None:
        stored = self._wallets.get(wallet.user_id)
        if stored is None or stored.version != wallet.version:
            raise ConcurrentModification(
                f"Wallet of {wallet.user_id} was modified concurrently"
            )
        wallet.version += 1
        self._wallets[wallet.user_id] = copy.deepcopy(wallet)

    def set_active(self, user_id: str, active: bool) -> None:
        self._wallets[user_id].is_active = active


class InMemoryPolicyRepository(PolicyRepository):
    def __init__(self, policy: Optional[CancellationPolicy] = None):
        self._policies: list[CancellationPolicy] = []
        if policy is not None:
            self._policies.append(replace(policy, is_active=True))

    async def get_active(self) -> Optional[CancellationPolicy]:
        for policy in self._policies:
            if policy.is_active:
                return policy
        return None

    async def activate(self, policy: CancellationPolicy) -> CancellationPolicy:
        self._policies = [replace(p, is_active=False) for p in self._policies]
        active = replace(policy, is_active=True, id=len(self._policies) + 1)
        self._policies.append(active)
        return active


@dataclass
class DirectoryEntry:
    role: str  # "driver" | "passenger"
    is_available: bool = True
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    total_earnings: Decimal = ZERO
    completed_rides: int = 0
    cancelled_rides: int = 0
    penalties: Decimal = ZERO

    @property
    def cancellation_rate(self) -> float:
        total = self.completed_rides + self.cancelled_rides
        return round(self.cancelled_rides / total * 100, 2) if total else 0.0


class InMemoryDirectory(DirectoryService):
    def __init__(self):
        self.entries: dict[str, DirectoryEntry] = {}

    def add_passenger(self, user_id: str) -> None:
        self.entries[user_id] = DirectoryEntry(role="passenger")

    def add_driver(
        self,
        user_id: str,
        *,
        available: bool = True,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> None:
        self.entries[user_id] = DirectoryEntry(
            role="driver", is_available=available,
            latitude=latitude, longitude=longitude,
        )

    async def get_user(self, user_id: str) -> UserRecord:
        entry = self.entries.get(user_id)
        if entry is None:
            return UserRecord(exists=False)
        return UserRecord(
            exists=True,
            is_available=entry.is_available,
            latitude=entry.latitude,
            longitude=entry.longitude,
        )

    async def set_availability(self, driver_id: str, available: bool) -> None:
        if driver_id in self.entries:
            self.entries[driver_id].is_available = available

    async def record_trip(self, driver_id: str, earnings: Decimal) -> None:
        entry = self.entries.get(driver_id)
        if entry:
            entry.total_earnings += earnings
            entry.completed_rides += 1

    async def record_cancellation(
        self, user_id: str, role: CancelledBy, penalty: Decimal
    ) -> None:
        entry = self.entries.get(user_id)
        if entry:
            entry.cancelled_rides += 1
            entry.penalties += penalty


class StaticDemandSignalProvider(DemandSignalProvider):
    """Fixed demand per area; areas without an entry have no signal."""

    def __init__(self, contexts: Optional[dict[str, DemandContext]] = None):
        self.contexts = dict(contexts or {})

    async def get_demand_context(self, area: str) -> Optional[DemandContext]:
        return self.contexts.get(area)


class InMemoryEventSink(EventSink):
    def __init__(self):
        self.events: list[RideStateChanged | PaymentEvent] = []

    async def publish(self, event: RideStateChanged | PaymentEvent) -> None:
        self.events.append(event)

"""
Shared test fixtures.

The services are wired to the in-memory adapters (no Docker / PostgreSQL /
Redis needed) and a controllable clock, fixed on an off-peak Wednesday so
time-of-day multipliers stay at 1.0 unless a test moves it.  The SQL
repositories are exercised separately against in-memory SQLite (aiosqlite).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.domain.cancellation import default_policy
from ridecore.domain.entities import Location
from ridecore.infrastructure.database import create_schema, make_engine, make_session_factory
from ridecore.infrastructure.gateway import SimulatedPaymentGateway
from ridecore.infrastructure.locks import InMemoryLockProvider
from ridecore.services.ride_lifecycle import RideLifecycle
from ridecore.services.settlement import GatewayCaller
from ridecore.services.wallet_ledger import WalletLedger
from tests.fakes import (
    InMemoryDirectory,
    InMemoryEventSink,
    InMemoryPolicyRepository,
    InMemoryRideRepository,
    InMemoryWalletRepository,
    StaticDemandSignalProvider,
)

# Wednesday 14 Oct 2026, 11:00 UTC: no peak / night window applies
WEDNESDAY_MORNING = datetime(2026, 10, 14, 11, 0, tzinfo=timezone.utc)

SANDTON = Location(-26.1076, 28.0567, "Sandton City")
ROSEBANK = Location(-26.1467, 28.0436, "Rosebank Mall")


class Clock:
    def __init__(self, now: datetime = WEDNESDAY_MORNING):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


async def no_sleep(_seconds: float) -> None:
    return None


@dataclass
class Core:
    clock: Clock
    rides: InMemoryRideRepository
    wallets: InMemoryWalletRepository
    policies: InMemoryPolicyRepository
    directory: InMemoryDirectory
    demand: StaticDemandSignalProvider
    events: InMemoryEventSink
    locks: InMemoryLockProvider
    gateway: SimulatedPaymentGateway
    ledger: WalletLedger
    lifecycle: RideLifecycle


def build_core(policy=None, gateway=None) -> Core:
    clock = Clock()
    locks = InMemoryLockProvider(wait_seconds=1.0)
    wallets = InMemoryWalletRepository()
    ledger = WalletLedger(wallets, locks, clock=clock)
    directory = InMemoryDirectory()
    directory.add_passenger("p1")
    directory.add_driver("d1", latitude=SANDTON.latitude, longitude=SANDTON.longitude)
    gateway = gateway or SimulatedPaymentGateway()
    rides = InMemoryRideRepository()
    policies = InMemoryPolicyRepository(policy)
    demand = StaticDemandSignalProvider()
    events = InMemoryEventSink()
    lifecycle = RideLifecycle(
        rides=rides,
        policies=policies,
        ledger=ledger,
        directory=directory,
        demand=demand,
        gateway=GatewayCaller(gateway, timeout_seconds=1.0, max_attempts=3, sleep=no_sleep),
        events=events,
        locks=locks,
        clock=clock,
        utc_offset_hours=0,
    )
    return Core(
        clock, rides, wallets, policies, directory, demand,
        events, locks, gateway, ledger, lifecycle,
    )


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def core() -> Core:
    """Lifecycle with the default cancellation policy active."""
    return build_core(policy=default_policy())


@pytest.fixture
def core_without_policy() -> Core:
    return build_core(policy=None)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory SQLite schema per test, one session over it."""
    engine = make_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    async with make_session_factory(engine)() as session:
        yield session
    await engine.dispose()

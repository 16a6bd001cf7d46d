"""
Repository Pattern -- SQL implementations of the domain ports.

Each repository receives an ``AsyncSession`` (unit-of-work); the caller
owns the transaction.  Writes are guarded by an optimistic ``version``
column: ``UPDATE ... WHERE version = :expected`` touching zero rows means
somebody else got there first and raises ``ConcurrentModification``.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .mappers import (
    policy_columns,
    policy_from_row,
    ride_columns,
    ride_from_row,
    wallet_from_rows,
)
from .models import (
    CancellationPolicyModel,
    DriverModel,
    PassengerModel,
    RideModel,
    WalletModel,
    WalletTransactionModel,
)
from ridecore.domain.entities import CancellationPolicy, Ride, Wallet, WalletTransaction
from ridecore.domain.enums import CancelledBy, PaymentStatus, RefundStatus, RideStatus
from ridecore.domain.errors import ConcurrentModification
from ridecore.domain.ports import (
    DemandSignalProvider,
    DirectoryService,
    PolicyRepository,
    RideRepository,
    UserRecord,
    WalletRepository,
)
from ridecore.domain.pricing import DemandContext


class SqlRideRepository(RideRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, ride: Ride) -> Ride:
        self.session.add(RideModel(id=ride.id, version=ride.version, **ride_columns(ride)))
        await self.session.flush()
        return ride

    async def get(self, ride_id: str) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return ride_from_row(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return ride_from_row(row) if row else None

    async def save(self, ride: Ride) -> Ride:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id, RideModel.version == ride.version)
            .values(version=ride.version + 1, **ride_columns(ride))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(f"Ride {ride.id} was modified concurrently")
        ride.version += 1
        return ride

    async def find_unsettled(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        query = select(RideModel).where(
            RideModel.status == RideStatus.COMPLETED,
            RideModel.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]),
            RideModel.total_fare > 0,
        )
        if max_attempts is not None:
            query = query.where(RideModel.settlement_attempts < max_attempts)
        result = await self.session.execute(
            query.order_by(RideModel.updated_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [ride_from_row(row) for row in result.scalars().all()]

    async def find_refundable(
        self, limit: int = 100, max_attempts: Optional[int] = None
    ) -> list[Ride]:
        query = select(RideModel).where(
            RideModel.status == RideStatus.CANCELLED,
            RideModel.refund_status.in_([RefundStatus.PENDING, RefundStatus.FAILED]),
        )
        if max_attempts is not None:
            query = query.where(RideModel.refund_attempts < max_attempts)
        result = await self.session.execute(
            query.order_by(RideModel.updated_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [ride_from_row(row) for row in result.scalars().all()]

    async def count_pending(self, area: Optional[str] = None) -> int:
        query = (
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.status == RideStatus.PENDING)
        )
        if area:
            query = query.where(RideModel.pickup_cell == area)
        result = await self.session.execute(query)
        return result.scalar() or 0


class SqlWalletRepository(WalletRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[Wallet]:
        row = (
            await self.session.execute(
                select(WalletModel)
                .where(WalletModel.user_id == user_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        transactions = await self.session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.user_id == user_id)
            .order_by(WalletTransactionModel.sequence)
        )
        return wallet_from_rows(row, list(transactions.scalars().all()))

    async def create(self, wallet: Wallet) -> Wallet:
        existing = await self.get(wallet.user_id)
        if existing is not None:
            return existing
        self.session.add(
            WalletModel(
                user_id=wallet.user_id,
                currency=wallet.currency,
                balance=wallet.balance,
                is_active=wallet.is_active,
                version=wallet.version,
            )
        )
        await self.session.flush()
        return wallet

    async def append(self, wallet: Wallet, transaction: WalletTransaction) -> None:
        result = await self.session.execute(
            update(WalletModel)
            .where(
                WalletModel.user_id == wallet.user_id,
                WalletModel.version == wallet.version,
            )
            .values(balance=wallet.balance, version=wallet.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(
                f"Wallet of {wallet.user_id} was modified concurrently"
            )
        self.session.add(
            WalletTransactionModel(
                id=transaction.id,
                user_id=wallet.user_id,
                sequence=len(wallet.transactions) - 1,
                type=transaction.type,
                amount=transaction.amount,
                reference=transaction.reference,
                description=transaction.description,
                balance_after=transaction.balance_after,
                status=transaction.status,
                created_at=transaction.created_at,
            )
        )
        await self.session.flush()
        wallet.version += 1


class SqlPolicyRepository(PolicyRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self) -> Optional[CancellationPolicy]:
        result = await self.session.execute(
            select(CancellationPolicyModel)
            .where(CancellationPolicyModel.is_active.is_(True))
            .order_by(CancellationPolicyModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return policy_from_row(row) if row else None

    async def activate(self, policy: CancellationPolicy) -> CancellationPolicy:
        await self.session.execute(
            update(CancellationPolicyModel)
            .where(CancellationPolicyModel.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        row = CancellationPolicyModel(is_active=True, **policy_columns(policy))
        self.session.add(row)
        await self.session.flush()
        return replace(policy, id=row.id, is_active=True)


class SqlDirectory(DirectoryService):
    """Directory backed by the ``passengers`` / ``drivers`` tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> UserRecord:
        driver = await self.session.get(DriverModel, user_id)
        if driver is not None:
            return UserRecord(
                exists=True,
                is_available=driver.is_available,
                latitude=driver.latitude,
                longitude=driver.longitude,
            )
        passenger = await self.session.get(PassengerModel, user_id)
        return UserRecord(exists=passenger is not None)

    async def set_availability(self, driver_id: str, available: bool) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_available=available)
        )

    async def record_trip(self, driver_id: str, earnings: Decimal) -> None:
        driver = await self._driver_for_update(driver_id)
        if driver is None:
            return
        driver.total_earnings = Decimal(driver.total_earnings or 0) + earnings
        driver.completed_rides = (driver.completed_rides or 0) + 1
        self._refresh_rate(driver)
        await self.session.flush()

    async def record_cancellation(
        self, user_id: str, role: CancelledBy, penalty: Decimal
    ) -> None:
        if role == CancelledBy.DRIVER:
            driver = await self._driver_for_update(user_id)
            if driver is None:
                return
            driver.cancelled_rides = (driver.cancelled_rides or 0) + 1
            driver.penalties = Decimal(driver.penalties or 0) + penalty
            self._refresh_rate(driver)
        else:
            passenger = await self.session.get(PassengerModel, user_id)
            if passenger is None:
                return
            passenger.cancelled_rides = (passenger.cancelled_rides or 0) + 1
            passenger.penalties = Decimal(passenger.penalties or 0) + penalty
        await self.session.flush()

    async def _driver_for_update(self, driver_id: str) -> Optional[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.id == driver_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _refresh_rate(driver: DriverModel) -> None:
        total = driver.completed_rides + driver.cancelled_rides
        driver.cancellation_rate = (
            round(driver.cancelled_rides / total * 100, 2) if total else 0.0
        )


class SqlDemandSignalProvider(DemandSignalProvider):
    """Available drivers and pending rides in the pickup's H3 cell."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_demand_context(self, area: str) -> Optional[DemandContext]:
        available = (
            await self.session.execute(
                select(func.count())
                .select_from(DriverModel)
                .where(DriverModel.is_available.is_(True), DriverModel.h3_cell == area)
            )
        ).scalar() or 0
        pending = await SqlRideRepository(self.session).count_pending(area)
        if available == 0 and pending == 0:
            # Nothing known about this area
            return None
        return DemandContext(available_drivers=available, pending_requests=pending)

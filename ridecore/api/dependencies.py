"""FastAPI dependency injection helpers."""

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.domain.ports import PolicyRepository
from ridecore.infrastructure.database import async_session_factory
from ridecore.infrastructure.redis_client import get_redis
from ridecore.infrastructure.repositories import SqlPolicyRepository
from ridecore.infrastructure.wiring import build_ledger, build_lifecycle
from ridecore.services.ride_lifecycle import RideLifecycle
from ridecore.services.wallet_ledger import WalletLedger


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session; commit on success, rollback on error.

    Services built on it also commit inside their aggregate locks, so the
    final commit here only covers what ran outside a lock.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_lifecycle(db: AsyncSession = Depends(get_db)) -> RideLifecycle:
    return build_lifecycle(db, await get_redis())


async def get_ledger(db: AsyncSession = Depends(get_db)) -> WalletLedger:
    return build_ledger(db, await get_redis())


async def get_policies(db: AsyncSession = Depends(get_db)) -> PolicyRepository:
    return SqlPolicyRepository(db)

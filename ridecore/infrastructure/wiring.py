"""Assemble the services from a DB session and a Redis client.

The session's ``commit`` is handed to the services so each unit of work is
committed while its aggregate lock is still held.
"""

from __future__ import annotations

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.config import settings
from ridecore.domain.pricing import FarePricingEngine
from ridecore.infrastructure.events import RedisEventSink
from ridecore.infrastructure.gateway import SimulatedPaymentGateway
from ridecore.infrastructure.locks import RedisLockProvider
from ridecore.infrastructure.repositories import (
    SqlDemandSignalProvider,
    SqlDirectory,
    SqlPolicyRepository,
    SqlRideRepository,
    SqlWalletRepository,
)
from ridecore.services.ride_lifecycle import RideLifecycle
from ridecore.services.settlement import GatewayCaller
from ridecore.services.wallet_ledger import WalletLedger

# One stub per process; replace with the real provider client
payment_gateway = SimulatedPaymentGateway()


def build_locks(redis: aioredis.Redis) -> RedisLockProvider:
    return RedisLockProvider(
        redis,
        ttl_seconds=settings.lock_ttl_seconds,
        wait_seconds=settings.lock_wait_seconds,
    )


def build_ledger(session: AsyncSession, redis: aioredis.Redis) -> WalletLedger:
    return WalletLedger(
        SqlWalletRepository(session),
        build_locks(redis),
        currency=settings.currency,
        commit=session.commit,
    )


def build_lifecycle(session: AsyncSession, redis: aioredis.Redis) -> RideLifecycle:
    locks = build_locks(redis)
    return RideLifecycle(
        rides=SqlRideRepository(session),
        policies=SqlPolicyRepository(session),
        ledger=WalletLedger(
            SqlWalletRepository(session), locks,
            currency=settings.currency, commit=session.commit,
        ),
        directory=SqlDirectory(session),
        demand=SqlDemandSignalProvider(session),
        gateway=GatewayCaller(
            payment_gateway,
            timeout_seconds=settings.gateway_timeout_seconds,
            max_attempts=settings.gateway_max_attempts,
            backoff_seconds=settings.gateway_backoff_seconds,
        ),
        events=RedisEventSink(redis, settings.event_channel),
        locks=locks,
        pricing=FarePricingEngine(currency=settings.currency),
        currency=settings.currency,
        h3_resolution=settings.h3_resolution,
        default_traffic=settings.default_traffic,
        utc_offset_hours=settings.utc_offset_hours,
        max_pickup_distance_km=settings.max_pickup_distance_km,
        commit=session.commit,
    )

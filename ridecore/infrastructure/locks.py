"""
Per-aggregate locks.

Every ride mutation runs under ``ride:<id>`` and every wallet mutation under
``wallet:<user_id>``, so a concurrent "complete" and "cancel" on the same
ride cannot both succeed and a balance read-compute-write is one unit.

* ``InMemoryLockProvider`` -- asyncio locks, for a single process and tests.
* ``RedisLockProvider``    -- ``DistributedLock`` per key, for several API
  processes.  Acquire uses SET NX EX and release a Lua script for atomic
  check-and-delete.

Neither blocks forever: acquisition gives up with ``LockTimeout`` after
``wait_seconds``.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis

from ridecore.domain.errors import LockTimeout
from ridecore.domain.ports import LockProvider


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(
        self, wait_seconds: float, poll_seconds: float = 0.05
    ) -> bool:
        """Retry ``acquire`` until it succeeds or *wait_seconds* elapse."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_seconds)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)


class RedisLockProvider(LockProvider):
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 30,
        wait_seconds: float = 5.0,
    ):
        self.redis = client
        self.ttl = ttl_seconds
        self.wait = wait_seconds

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = DistributedLock(self.redis, key, ttl_seconds=self.ttl)
        if not await lock.acquire_within(self.wait):
            raise LockTimeout(f"Could not acquire lock: {lock.key}")
        try:
            yield
        finally:
            await lock.release()


class InMemoryLockProvider(LockProvider):
    def __init__(self, wait_seconds: float = 5.0):
        self.wait = wait_seconds
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks[key]
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait)
        except asyncio.TimeoutError:
            raise LockTimeout(f"Could not acquire lock: {key}") from None
        try:
            yield
        finally:
            lock.release()

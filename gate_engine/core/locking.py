"""Distributed gate locking: serialize evaluations of one gate using Redis.

Evaluations of the same (merchant, gate type) read the prior state and write
a new one; two of them interleaving could reset a grace-period expiry. This
module provides:
- Per-gate locks keyed by merchant and gate type
- Lock acquisition with optional wait
- Owner-checked release
- Automatic lock expiration so a crashed job cannot wedge a gate
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis

from gate_engine.db.redis import get_redis


class GateLock:
    """Manages distributed per-gate locks using Redis."""

    LOCK_PREFIX = "gates:lock:"
    DEFAULT_TTL = 60  # seconds
    POLL_INTERVAL = 0.2

    def __init__(self, client: redis.Redis | None = None):
        self._client = client

    def _get_redis(self) -> redis.Redis:
        """Get the injected client, else the shared Redis connection."""
        return self._client if self._client is not None else get_redis()

    def _lock_key(self, merchant_id: str, gate_type: str) -> str:
        return f"{self.LOCK_PREFIX}{merchant_id}:{gate_type}"

    async def acquire(
        self,
        merchant_id: str,
        gate_type: str,
        owner: str,
        ttl: int | None = None,
    ) -> bool:
        """Attempt to acquire the lock for a gate.

        Args:
            merchant_id: Merchant identifier
            gate_type: Gate type value
            owner: Identifier of the lock owner (e.g., job run id)
            ttl: Lock time-to-live in seconds

        Returns:
            True if lock acquired (or already held by owner), False otherwise
        """
        r = self._get_redis()
        key = self._lock_key(merchant_id, gate_type)
        ttl = ttl or self.DEFAULT_TTL

        lock_value = f"{owner}|{datetime.now(UTC).isoformat()}"
        if await r.set(key, lock_value, nx=True, ex=ttl):
            return True

        current = await r.get(key)
        if current and current.split("|", 1)[0] == owner:
            await r.expire(key, ttl)
            return True

        return False

    async def release(self, merchant_id: str, gate_type: str, owner: str) -> bool:
        """Release a gate lock if owned by owner."""
        r = self._get_redis()
        key = self._lock_key(merchant_id, gate_type)

        current = await r.get(key)
        if current and current.split("|", 1)[0] == owner:
            await r.delete(key)
            return True

        return False

    async def is_locked(self, merchant_id: str, gate_type: str) -> dict | None:
        """Return lock info if the gate is locked, None otherwise."""
        r = self._get_redis()
        key = self._lock_key(merchant_id, gate_type)

        current = await r.get(key)
        if not current:
            return None

        owner, _, locked_at = current.partition("|")
        return {
            "merchant_id": merchant_id,
            "gate_type": gate_type,
            "owner": owner,
            "locked_at": locked_at or None,
            "expires_in": await r.ttl(key),
        }

    @asynccontextmanager
    async def lock(
        self,
        merchant_id: str,
        gate_type: str,
        owner: str,
        ttl: int | None = None,
        wait: bool = False,
        wait_timeout: float = 10,
    ) -> AsyncGenerator[bool, None]:
        """Context manager for gate locking.

        Yields:
            True if lock acquired

        Example:
            async with gate_lock.lock("m-1", "deliverability", "run-42", wait=True) as acquired:
                if acquired:
                    await service.evaluate(...)
        """
        acquired = False
        try:
            if wait:
                loop = asyncio.get_running_loop()
                deadline = loop.time() + wait_timeout
                while True:
                    acquired = await self.acquire(merchant_id, gate_type, owner, ttl)
                    if acquired or loop.time() >= deadline:
                        break
                    await asyncio.sleep(self.POLL_INTERVAL)
            else:
                acquired = await self.acquire(merchant_id, gate_type, owner, ttl)

            yield acquired

        finally:
            if acquired:
                await self.release(merchant_id, gate_type, owner)

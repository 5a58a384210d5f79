"""Lock service: per-resource mutexes for invoice balances and draft refreshes."""

import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from traveldesk.config import settings
from traveldesk.errors import ConflictError

logger = logging.getLogger(__name__)


class LockService:
    """Redis-backed locks shared across workers, in-process asyncio locks otherwise."""

    def __init__(self):
        self._redis: redis.Redis | None = None
        self._redis_failed = False
        self._local: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    async def _get_redis(self) -> redis.Redis | None:
        if settings.lock_backend != "redis" or self._redis_failed:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(settings.redis_url, decode_responses=True)
                await self._redis.ping()
            except (RedisError, OSError) as e:
                logger.warning(f"Redis unavailable, using in-process locks: {e}")
                self._redis = None
                self._redis_failed = True
                return None
        return self._redis

    @asynccontextmanager
    async def _hold_local(self, key: str, wait: bool):
        lock = self._local.get(key)
        if lock is None:
            lock = self._local[key] = asyncio.Lock()
        if not wait and lock.locked():
            raise ConflictError(f"{key} is busy")
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the registry entry once nobody holds or waits for it
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._local[key]

    @asynccontextmanager
    async def hold(self, key: str, wait: bool = True):
        """Hold the lock for ``key``. With ``wait=False`` a busy lock raises ConflictError."""
        r = await self._get_redis()
        if r is None:
            async with self._hold_local(key, wait):
                yield
            return

        rlock = r.lock(
            f"lock:{key}",
            timeout=settings.lock_timeout_seconds,
            blocking=wait,
            blocking_timeout=settings.lock_wait_seconds if wait else None,
        )
        if not await rlock.acquire():
            raise ConflictError(f"{key} is busy")
        try:
            yield
        finally:
            try:
                await rlock.release()
            except LockError as e:
                logger.warning(f"Lock {key} expired before release: {e}")

    def invoice_key(self, invoice_id) -> str:
        return f"invoice:{invoice_id}"

    def draft_key(self, lead_id) -> str:
        return f"draft:{lead_id}"

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


lock_service = LockService()

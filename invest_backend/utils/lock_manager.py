import asyncio
import logging
import time
import uuid
import weakref
from typing import Optional, AsyncIterator
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from ..core.errors import LockAcquisitionError


logger = logging.getLogger(__name__)


class DistributedLock:
    """Distributed lock implementation using Redis."""

    def __init__(
        self,
        redis_client: Redis,
        key: str,
        timeout: float = 30.0,
        blocking_timeout: Optional[float] = None
    ):
        """
        Initialize distributed lock.

        Args:
            redis_client: Redis client instance
            key: Lock key name
            timeout: Lock expiry in seconds, guards against crashed holders
            blocking_timeout: Maximum time to wait for lock acquisition
        """
        self.redis = redis_client
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.identifier = str(uuid.uuid4())
        self.acquired = False

    async def acquire(self, blocking: bool = True) -> bool:
        """Acquire the lock.

        Args:
            blocking: Whether to block until lock is acquired

        Returns:
            bool: True if lock was acquired, False otherwise

        Raises:
            LockAcquisitionError: If Redis is unreachable
        """
        if self.acquired:
            return True

        timeout = self.blocking_timeout if blocking else 0
        end_time = time.time() + (timeout or 0)

        while True:
            try:
                result = await self.redis.set(
                    self.key,
                    self.identifier,
                    nx=True,
                    ex=max(int(self.timeout), 1)
                )

                if result:
                    self.acquired = True
                    return True

                if not blocking or (timeout and time.time() >= end_time):
                    return False

                await asyncio.sleep(0.01)

            except RedisError as e:
                raise LockAcquisitionError(f"Failed to acquire lock: {e}")

    async def release(self) -> bool:
        """Release the lock if this instance still owns it.

        Returns:
            bool: True if lock was released, False if not owned
        """
        if not self.acquired:
            return False

        # Atomic check-and-delete
        lua_script = """
        if redis.call("GET", KEYS[1]) == ARGV[1] then
            return redis.call("DEL", KEYS[1])
        else
            return 0
        end
        """

        try:
            result = await self.redis.eval(lua_script, 1, self.key, self.identifier)
        except RedisError as e:
            logger.warning(f"Failed to release lock {self.key}: {e}")
            return False

        self.acquired = False
        return bool(result)

    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise LockAcquisitionError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


class LockManager:
    """Hands out per-key critical sections for balance-mutating operations.

    The ``local`` backend serializes coroutines within one process using
    ``asyncio.Lock`` objects keyed by name. The ``redis`` backend uses
    :class:`DistributedLock` so several API workers and Celery processes
    share the same critical sections.
    """

    def __init__(self, backend: Optional[str] = None, redis_url: Optional[str] = None):
        self.backend = (backend or settings.lock_backend).lower()
        self.redis_url = redis_url or settings.redis_url
        self._redis_client: Optional[Redis] = None
        self._local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def get_redis_client(self) -> Redis:
        if self._redis_client is None:
            self._redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return self._redis_client

    async def close(self):
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None

    def _get_local_lock(self, key: str) -> asyncio.Lock:
        lock = self._local_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[key] = lock
        return lock

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None
    ) -> AsyncIterator[None]:
        """Hold the named lock for the duration of the block.

        Args:
            key: Lock key name
            timeout: Expiry of a distributed lock in seconds
            blocking_timeout: Maximum time to wait for acquisition

        Raises:
            LockAcquisitionError: If the lock is not obtained in time
        """
        timeout = timeout or settings.lock_timeout_seconds
        if blocking_timeout is None:
            blocking_timeout = settings.lock_blocking_timeout_seconds

        if self.backend == "redis":
            redis_client = await self.get_redis_client()
            async with DistributedLock(
                redis_client=redis_client,
                key=key,
                timeout=timeout,
                blocking_timeout=blocking_timeout
            ):
                yield
            return

        lock = self._get_local_lock(key)
        try:
            if blocking_timeout:
                await asyncio.wait_for(lock.acquire(), timeout=blocking_timeout)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Timed out waiting for lock {key}")
            raise LockAcquisitionError(f"Could not acquire lock: {key}")

        try:
            yield
        finally:
            lock.release()


# Global lock manager instance
_lock_manager: Optional[LockManager] = None


def get_lock_manager() -> LockManager:
    """Get global lock manager instance."""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = LockManager()
    return _lock_manager


def reset_lock_manager(manager: Optional[LockManager] = None) -> None:
    """Replace the global lock manager (used by tests and worker startup)."""
    global _lock_manager
    _lock_manager = manager


class LockPatterns:
    """Common lock key patterns."""

    @staticmethod
    def user_balance(user_id: int) -> str:
        """Lock pattern for anything that reads then writes a user's balances."""
        return f"balance:user:{user_id}"

    @staticmethod
    def daily_accrual() -> str:
        """Lock pattern for a whole accrual run."""
        return "accrual:daily"

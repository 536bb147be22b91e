"""
Redis connection and per-user locks. Order creation for one user runs under a lock so the
active-order check and the insert are not interleaved with another request for the same user.
"""
import asyncio
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis

from storefront.config import settings

_redis: redis.Redis | None = None

LOCK_POLL_SEC = 0.05

# Delete the key only if we still own it (TTL may have handed it to someone else)
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockTimeoutError(Exception):
    """Raised when a per-user lock could not be acquired in time."""


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


class RedisUserLocks:
    """SET NX EX lock keyed by user id."""

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = settings.order_lock_ttl_seconds,
        wait_seconds: float = settings.order_lock_wait_seconds,
    ):
        self._client = client
        self._ttl = ttl_seconds
        self._wait = wait_seconds

    @staticmethod
    def key(user_id: int) -> str:
        return f"lock:orders:user:{user_id}"

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        key = self.key(user_id)
        token = secrets.token_hex(16)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._wait
        while not await self._client.set(key, token, nx=True, ex=self._ttl):
            if loop.time() >= deadline:
                raise LockTimeoutError(key)
            await asyncio.sleep(LOCK_POLL_SEC)
        try:
            yield
        finally:
            await self._client.eval(_RELEASE_SCRIPT, 1, key, token)

import asyncio

import pytest

from storefront.redis_client import LockTimeoutError, RedisUserLocks


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX locks."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


def test_lock_is_released_after_use():
    client = FakeRedis()
    locks = RedisUserLocks(client, ttl_seconds=5, wait_seconds=0.1)

    async def use():
        async with locks.hold(7):
            assert RedisUserLocks.key(7) in client.data

    asyncio.run(use())
    assert client.data == {}


def test_lock_released_when_body_raises():
    client = FakeRedis()
    locks = RedisUserLocks(client, ttl_seconds=5, wait_seconds=0.1)

    async def use():
        async with locks.hold(7):
            raise ValueError("boom")

    with pytest.raises(ValueError):
        asyncio.run(use())
    assert client.data == {}


def test_held_lock_times_out():
    client = FakeRedis()
    client.data[RedisUserLocks.key(3)] = "someone-else"
    locks = RedisUserLocks(client, ttl_seconds=5, wait_seconds=0.1)

    async def use():
        async with locks.hold(3):
            pass

    with pytest.raises(LockTimeoutError):
        asyncio.run(use())
    assert client.data[RedisUserLocks.key(3)] == "someone-else"


def test_other_users_do_not_block():
    client = FakeRedis()
    locks = RedisUserLocks(client, ttl_seconds=5, wait_seconds=0.1)

    async def use():
        async with locks.hold(1):
            async with locks.hold(2):
                return sorted(client.data)

    assert asyncio.run(use()) == [RedisUserLocks.key(1), RedisUserLocks.key(2)]

"""Lifecycle of the shared Redis client used by the cache backend.

No server is needed: redis.asyncio connects lazily, so creating and closing
a client never opens a socket.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.infrastructure import redis

REDIS_URL = "redis://localhost:6379/0"


@pytest.fixture(autouse=True)
def reset_redis_state():
    redis._reset_for_testing()
    yield
    redis._reset_for_testing()


@pytest.mark.anyio
async def test_init_redis_returns_same_client_until_closed() -> None:
    first = await redis.init_redis(REDIS_URL)
    second = await redis.init_redis(REDIS_URL)

    assert first is second
    assert redis.get_redis() is first
    assert redis._redis_state == redis._RedisLifecycleState.INITIALIZED

    await redis.close_redis()


@pytest.mark.anyio
async def test_close_is_idempotent_and_safe_before_init() -> None:
    await redis.close_redis()
    assert redis._redis_state == redis._RedisLifecycleState.UNINITIALIZED

    await redis.init_redis(REDIS_URL)
    await redis.close_redis()
    await redis.close_redis()

    assert redis._redis_state == redis._RedisLifecycleState.CLOSED
    assert redis._redis_client is None


@pytest.mark.anyio
async def test_get_redis_outside_initialized_state_raises() -> None:
    with pytest.raises(RuntimeError, match="not available.*UNINITIALIZED"):
        redis.get_redis()

    await redis.init_redis(REDIS_URL)
    await redis.close_redis()

    with pytest.raises(RuntimeError, match="not available.*CLOSED"):
        redis.get_redis()


@pytest.mark.anyio
async def test_reinit_after_close_builds_new_client() -> None:
    first = await redis.init_redis(REDIS_URL)
    await redis.close_redis()

    second = await redis.init_redis(REDIS_URL)

    assert second is not first
    assert redis.get_redis() is second
    await redis.close_redis()


@pytest.mark.anyio
async def test_concurrent_init_creates_one_client() -> None:
    clients = await asyncio.gather(*(redis.init_redis(REDIS_URL) for _ in range(10)))

    assert all(client is clients[0] for client in clients)
    await redis.close_redis()


@pytest.mark.anyio
async def test_set_value_uses_setex_only_with_ttl() -> None:
    client = redis.RedisClient(REDIS_URL)
    fake = AsyncMock()
    client._redis = fake

    await client.set_value("user_permissions:1", '["users.view"]', ttl_seconds=3600)
    await client.set_value("system_setting_all", "{}")

    fake.setex.assert_awaited_once_with("user_permissions:1", 3600, '["users.view"]')
    fake.set.assert_awaited_once_with("system_setting_all", "{}")


@pytest.mark.anyio
async def test_get_and_delete_delegate_to_redis() -> None:
    client = redis.RedisClient(REDIS_URL)
    fake = AsyncMock()
    fake.get.return_value = "cached"
    client._redis = fake

    assert await client.get_value("system_setting_timezone") == "cached"
    await client.delete_value("system_setting_timezone")

    fake.delete.assert_awaited_once_with("system_setting_timezone")

"""Redis client for shared cache entries.

Permission sets and system settings are cached here so every worker
process sees the same entries and the same invalidations.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

from redis.asyncio import Redis as AsyncRedis, from_url as async_from_url

logger = logging.getLogger(__name__)


class _RedisLifecycleState(Enum):
    """Lifecycle states for the Redis singleton.

    UNINITIALIZED -> INITIALIZED (init_redis), INITIALIZED -> CLOSED
    (close_redis), CLOSED -> INITIALIZED (init_redis again).
    """
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    CLOSED = auto()


class RedisClient:
    """Async Redis client exposing the string operations the cache needs."""

    def __init__(self, redis_url: str) -> None:
        """Initialize Redis client.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
        """
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._redis is None:
            self._redis = async_from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connection established")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    async def _ensure_connected(self) -> AsyncRedis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    async def set_value(
        self,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
    ) -> None:
        """Set a string value with optional TTL.

        Args:
            key: Key
            value: Value
            ttl_seconds: Optional TTL
        """
        redis = await self._ensure_connected()
        if ttl_seconds:
            await redis.setex(key, ttl_seconds, value)
        else:
            await redis.set(key, value)

    async def get_value(self, key: str) -> str | None:
        """Get a string value, or None if the key does not exist."""
        redis = await self._ensure_connected()
        return await redis.get(key)

    async def delete_value(self, key: str) -> None:
        redis = await self._ensure_connected()
        await redis.delete(key)


# Created at startup, not at import
_redis_client: RedisClient | None = None
_redis_state: _RedisLifecycleState = _RedisLifecycleState.UNINITIALIZED
_redis_lock: asyncio.Lock = asyncio.Lock()


async def init_redis(redis_url: str) -> RedisClient:
    """Initialize the global Redis client.

    Idempotent: a second call while initialized returns the existing client.

    Args:
        redis_url: Redis connection URL

    Returns:
        Redis client instance
    """
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state == _RedisLifecycleState.INITIALIZED:
            assert _redis_client is not None
            logger.debug("Redis already initialized, returning existing client")
            return _redis_client

        logger.info("Initializing Redis client (current state: %s)", _redis_state.name)
        _redis_client = RedisClient(redis_url)
        await _redis_client.connect()
        _redis_state = _RedisLifecycleState.INITIALIZED
        logger.info("Redis client initialized successfully")
        return _redis_client


async def close_redis() -> None:
    """Close the global Redis client. Safe to call when not initialized."""
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state != _RedisLifecycleState.INITIALIZED:
            logger.debug("Redis not initialized (state: %s), nothing to close", _redis_state.name)
            return

        logger.info("Closing Redis client")
        if _redis_client is not None:
            await _redis_client.disconnect()
            _redis_client = None
        _redis_state = _RedisLifecycleState.CLOSED
        logger.info("Redis client closed successfully")


def get_redis() -> RedisClient:
    """Get the global async Redis client.

    Raises:
        RuntimeError: If Redis client not initialized
    """
    if _redis_state != _RedisLifecycleState.INITIALIZED or _redis_client is None:
        raise RuntimeError(
            f"Redis client not available (state: {_redis_state.name}). Call init_redis() first."
        )
    return _redis_client


def _reset_for_testing() -> None:
    global _redis_client, _redis_state
    _redis_client = None
    _redis_state = _RedisLifecycleState.UNINITIALIZED

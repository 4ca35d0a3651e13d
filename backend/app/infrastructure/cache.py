"""Cache backends behind the CacheBackend port.

RedisCacheBackend is used in deployments; InMemoryCacheBackend serves
single-process runs and tests, with an injectable clock so expiry can be
driven deterministically.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from redis.exceptions import RedisError

from ..domain.ports.cache import CacheBackend, CacheError
from .redis import RedisClient

logger = logging.getLogger(__name__)


class RedisCacheBackend:
    def __init__(self, client: RedisClient) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get_value(key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=GET key=%s error=%s", key, exc)
            raise CacheError(str(exc)) from exc

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set_value(key, value, ttl_seconds=ttl_seconds)
        except RedisError as exc:
            logger.error("Redis operation failed operation=SET key=%s error=%s", key, exc)
            raise CacheError(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete_value(key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=DEL key=%s error=%s", key, exc)
            raise CacheError(str(exc)) from exc


class InMemoryCacheBackend:
    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[str, float | None]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries


_cache_backend: CacheBackend | None = None


def set_cache_backend(backend: CacheBackend | None) -> None:
    global _cache_backend
    _cache_backend = backend


def get_cache_backend() -> CacheBackend:
    """Return the process-wide backend, defaulting to in-memory."""
    global _cache_backend
    if _cache_backend is None:
        logger.warning("No cache backend configured, falling back to in-memory cache")
        _cache_backend = InMemoryCacheBackend()
    return _cache_backend

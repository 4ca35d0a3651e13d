from __future__ import annotations

from typing import Protocol


class CacheBackend(Protocol):
    """Key/value store with per-key expiry.

    Values are opaque strings; callers serialize before storing.
    """

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class CacheError(Exception):
    """Raised by a cache backend when the underlying store is unavailable."""

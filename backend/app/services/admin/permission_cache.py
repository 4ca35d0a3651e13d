import json
import logging
from collections.abc import Awaitable, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.role import RoleRepository
from ...domain.ports.cache import CacheBackend, CacheError

logger = logging.getLogger("rbac_admin.permission_cache")

PERMISSION_CACHE_TTL_SECONDS = 3600

PermissionResolver = Callable[[int], Awaitable[set[str]]]


def permission_cache_key(user_id: int) -> str:
    return f"user_permissions:{user_id}"


class PermissionCache:
    """Per-user cache of resolved permission names.

    Entries expire after ``ttl_seconds`` and are dropped explicitly whenever
    a mutation can change a user's effective set. Backend failures never fail
    a request: reads fall back to the resolver and failed invalidations are
    bounded by the TTL.
    """

    def __init__(self, backend: CacheBackend, ttl_seconds: int = PERMISSION_CACHE_TTL_SECONDS):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    async def get(self, user_id: int, resolver: PermissionResolver) -> set[str]:
        key = permission_cache_key(user_id)
        try:
            cached = await self.backend.get(key)
        except CacheError:
            logger.warning("Permission cache read failed user_id=%s, resolving from store", user_id)
            return await resolver(user_id)

        if cached is not None:
            try:
                return set(json.loads(cached))
            except (TypeError, ValueError):
                logger.warning("Discarding malformed permission cache entry user_id=%s", user_id)

        permissions = await resolver(user_id)
        try:
            await self.backend.set(key, json.dumps(sorted(permissions)), ttl_seconds=self.ttl_seconds)
        except CacheError:
            logger.warning("Permission cache write failed user_id=%s", user_id)
        return permissions

    async def invalidate(self, user_id: int) -> None:
        try:
            await self.backend.delete(permission_cache_key(user_id))
        except CacheError:
            logger.error(
                "Permission cache invalidation failed user_id=%s; entry expires within %ss",
                user_id,
                self.ttl_seconds,
            )

    async def invalidate_users(self, user_ids: Iterable[int]) -> None:
        for user_id in sorted(set(user_ids)):
            await self.invalidate(user_id)

    async def invalidate_for_role(self, session: AsyncSession, role_id: int) -> list[int]:
        """Drop the entries of every current member of ``role_id``."""
        member_ids = await RoleRepository(session).get_member_ids(role_id)
        await self.invalidate_users(member_ids)
        logger.debug("Invalidated permission cache for role_id=%s users=%s", role_id, member_ids)
        return member_ids

from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository
from ...models.permission import Permission
from .permission_cache import PermissionCache


class PermissionService:
    """Resolves and checks a user's effective permissions.

    The effective set is the union of the permission names of every role
    the user holds. There is no inheritance, no wildcard and no negative
    grant: a name is either in the set or it is not.

    When a PermissionCache is supplied the checks read through it.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache | None = None):
        self.session = session
        self.cache = cache
        self.permission_repo = PermissionRepository(session)
        self.role_repo = RoleRepository(session)

    async def resolve_effective_permissions(self, user_id: int) -> set[str]:
        """Load the user's roles with their permissions and flatten them.

        Always hits the store; use effective_permissions for the cached path.
        """
        roles = await self.role_repo.get_user_roles(user_id)
        permissions: set[str] = set()
        for role in roles:
            permissions |= role.permission_names
        return permissions

    async def effective_permissions(self, user_id: int) -> set[str]:
        if self.cache is None:
            return await self.resolve_effective_permissions(user_id)
        return await self.cache.get(user_id, self.resolve_effective_permissions)

    async def has_permission(self, user_id: int, permission_name: str) -> bool:
        return permission_name in await self.effective_permissions(user_id)

    async def has_any_permission(self, user_id: int, permission_names: Iterable[str]) -> bool:
        """True when the user holds at least one of the names.

        An empty requirement list is treated as no requirement and allows.
        """
        required = set(permission_names)
        if not required:
            return True
        return bool(required & await self.effective_permissions(user_id))

    async def has_all_permissions(self, user_id: int, permission_names: Iterable[str]) -> bool:
        required = set(permission_names)
        if not required:
            return True
        return required <= await self.effective_permissions(user_id)

    async def get_all_permissions(self) -> list[Permission]:
        return await self.permission_repo.list_all()

    async def get_permissions_grouped_by_module(self) -> dict[str, list[dict]]:
        grouped: dict[str, list[dict]] = {}
        for permission in await self.permission_repo.list_all():
            grouped.setdefault(permission.module, []).append(
                {
                    "id": permission.id,
                    "name": permission.name,
                    "description": permission.description,
                }
            )
        return grouped

    async def validate_permission_ids(self, permission_ids: Iterable[int]) -> list[int]:
        """Return the ids that do not name an existing permission."""
        requested = set(permission_ids)
        existing = await self.permission_repo.get_existing_ids(requested)
        return sorted(requested - existing)

    async def clear_user_permissions_cache(self, user_id: int) -> None:
        if self.cache is not None:
            await self.cache.invalidate(user_id)

    async def clear_role_users_permissions_cache(self, role_id: int) -> list[int]:
        if self.cache is None:
            return []
        return await self.cache.invalidate_for_role(self.session, role_id)

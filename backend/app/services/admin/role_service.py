import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.role import RoleRepository
from ...errors import (
    DuplicateNameError,
    HasAssignedUsersError,
    InvalidReferenceError,
    NotFoundError,
    SystemRoleProtectedError,
)
from ...models.role import Role
from ..audit.audit_service import AuditContext, record_audit
from .permission_cache import PermissionCache
from .permission_service import PermissionService

logger = logging.getLogger("rbac_admin.roles")

ROLE_RESOURCE = "roles"
UPDATABLE_ROLE_FIELDS = ("name", "description", "is_system")


def role_snapshot(role: Role) -> dict[str, Any]:
    return {
        "name": role.name,
        "description": role.description,
        "is_system": role.is_system,
        "permissions": sorted(role.permission_names),
    }


class RoleService:
    """Role mutations.

    Every mutation validates before writing, commits in one transaction,
    then drops the permission cache of affected users and appends an audit
    entry. Members are read before the write so that users who leave the
    role during the change are invalidated too.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache):
        self.session = session
        self.cache = cache
        self.role_repo = RoleRepository(session)
        self.permission_service = PermissionService(session, cache)

    async def list_roles(self) -> list[tuple[Role, int]]:
        roles = await self.role_repo.list_all()
        counts = await self.role_repo.count_users_by_role()
        return [(role, counts.get(role.id, 0)) for role in roles]

    async def get_role(self, role_id: int) -> Role:
        role = await self.role_repo.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Role not found.")
        return role

    async def count_assigned_users(self, role_id: int) -> int:
        return await self.role_repo.count_users(role_id)

    async def has_assigned_users(self, role_id: int) -> bool:
        return await self.count_assigned_users(role_id) > 0

    async def _ensure_permissions_exist(self, permission_ids: Iterable[int]) -> None:
        invalid = await self.permission_service.validate_permission_ids(permission_ids)
        if invalid:
            raise InvalidReferenceError("permission_ids", invalid)

    async def create_role(
        self,
        name: str,
        description: str | None = None,
        permission_ids: list[int] | None = None,
        is_system: bool = False,
        *,
        context: AuditContext | None = None,
    ) -> Role:
        """Create a role and attach its permissions atomically.

        Raises:
            DuplicateNameError: If a role with exactly this name exists
            InvalidReferenceError: If any permission id does not exist
        """
        if await self.role_repo.get_by_name(name) is not None:
            raise DuplicateNameError(details={"name": ["A role with this name already exists."]})
        permission_ids = list(permission_ids or [])
        await self._ensure_permissions_exist(permission_ids)

        try:
            role = await self.role_repo.create(name=name, description=description, is_system=is_system)
            if permission_ids:
                await self.role_repo.sync_permissions(role.id, permission_ids)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        role = await self.get_role(role.id)
        logger.info("Role created role_id=%s name=%s", role.id, role.name)
        snapshot = role_snapshot(role)
        await record_audit(
            self.session, lambda audit: audit.log_create(ROLE_RESOURCE, role.id, snapshot, context)
        )
        return role

    async def update_role(
        self,
        role_id: int,
        changes: dict[str, Any],
        *,
        context: AuditContext | None = None,
    ) -> Role:
        """Apply a partial update.

        ``changes`` holds only the fields the caller supplied. A
        ``permission_ids`` entry replaces the role's permission set.

        Raises:
            NotFoundError: If the role does not exist
            DuplicateNameError: If the new name belongs to another role
            InvalidReferenceError: If any permission id does not exist
        """
        role = await self.get_role(role_id)

        new_name = changes.get("name")
        if new_name and new_name != role.name:
            if await self.role_repo.get_by_name(new_name, exclude_id=role_id) is not None:
                raise DuplicateNameError(details={"name": ["A role with this name already exists."]})

        permission_ids = changes.get("permission_ids")
        if permission_ids is not None:
            await self._ensure_permissions_exist(permission_ids)

        old_values = role_snapshot(role)
        member_ids = await self.role_repo.get_member_ids(role_id)

        try:
            for field in UPDATABLE_ROLE_FIELDS:
                if field not in changes:
                    continue
                if field == "name" and not changes[field]:
                    continue
                if field == "is_system" and changes[field] is None:
                    continue
                setattr(role, field, changes[field])
            await self.role_repo.update(role)
            if permission_ids is not None:
                await self.role_repo.sync_permissions(role_id, permission_ids)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.cache.invalidate_users(member_ids)
        role = await self.get_role(role_id)
        new_values = role_snapshot(role)
        await record_audit(
            self.session,
            lambda audit: audit.log_update(ROLE_RESOURCE, role_id, old_values, new_values, context),
        )
        return role

    async def delete_role(self, role_id: int, *, context: AuditContext | None = None) -> None:
        """Delete a role that is neither a system role nor assigned to anyone.

        Raises:
            NotFoundError: If the role does not exist
            SystemRoleProtectedError: If the role is a system role
            HasAssignedUsersError: If any non-deleted user holds the role
        """
        role = await self.get_role(role_id)
        if role.is_system:
            raise SystemRoleProtectedError("System roles cannot be deleted.")
        if await self.has_assigned_users(role_id):
            raise HasAssignedUsersError()

        old_values = role_snapshot(role)
        member_ids = await self.role_repo.get_member_ids(role_id)

        try:
            await self.role_repo.detach_all_permissions(role_id)
            await self.role_repo.delete(role)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.cache.invalidate_users(member_ids)
        logger.info("Role deleted role_id=%s name=%s", role_id, old_values["name"])
        await record_audit(
            self.session, lambda audit: audit.log_delete(ROLE_RESOURCE, role_id, old_values, context)
        )

    async def assign_permissions(
        self,
        role_id: int,
        permission_ids: list[int],
        *,
        context: AuditContext | None = None,
    ) -> Role:
        """Replace the role's permission set with exactly ``permission_ids``.

        Every member's cached permissions are dropped before this returns.

        Raises:
            NotFoundError: If the role does not exist
            InvalidReferenceError: If any permission id does not exist
        """
        role = await self.get_role(role_id)
        await self._ensure_permissions_exist(permission_ids)

        old_values = {"permissions": sorted(role.permission_names)}
        member_ids = await self.role_repo.get_member_ids(role_id)

        try:
            await self.role_repo.sync_permissions(role_id, permission_ids)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.cache.invalidate_users(member_ids)
        role = await self.get_role(role_id)
        new_values = {"permissions": sorted(role.permission_names)}
        await record_audit(
            self.session,
            lambda audit: audit.log_update(ROLE_RESOURCE, role_id, old_values, new_values, context),
        )
        return role

from collections.abc import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user import User
from ..models.user_role import UserRole


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str, description: str | None = None, is_system: bool = False) -> Role:
        role = Role(name=name, description=description, is_system=is_system)
        self.session.add(role)
        await self.session.flush()
        return role

    async def get_by_id(self, role_id: int) -> Role | None:
        # populate_existing reloads the permissions collection after a sync
        result = await self.session.execute(
            select(Role)
            .where(Role.id == role_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str, *, exclude_id: int | None = None) -> Role | None:
        query = select(Role).where(Role.name == name)
        if exclude_id is not None:
            query = query.where(Role.id != exclude_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_all(self) -> list[Role]:
        result = await self.session.execute(
            select(Role).order_by(Role.id).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_existing_ids(self, role_ids: Iterable[int]) -> set[int]:
        ids = set(role_ids)
        if not ids:
            return set()
        result = await self.session.execute(select(Role.id).where(Role.id.in_(ids)))
        return set(result.scalars().all())

    async def update(self, role: Role) -> Role:
        await self.session.flush()
        return role

    async def delete(self, role: Role) -> None:
        # Only soft-deleted members can still reference a deletable role
        await self.session.execute(delete(UserRole).where(UserRole.role_id == role.id))
        await self.session.delete(role)
        await self.session.flush()

    async def sync_permissions(self, role_id: int, permission_ids: Iterable[int]) -> None:
        """Make the role's permission set exactly ``permission_ids``.

        Only the difference is written; rows that stay keep their timestamps.
        """
        wanted = set(permission_ids)
        result = await self.session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role_id)
        )
        current = set(result.scalars().all())
        if current - wanted:
            await self.session.execute(
                delete(RolePermission).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id.in_(current - wanted),
                )
            )
        for permission_id in sorted(wanted - current):
            self.session.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.session.flush()

    async def detach_all_permissions(self, role_id: int) -> None:
        await self.session.execute(
            delete(RolePermission).where(RolePermission.role_id == role_id)
        )
        await self.session.flush()

    async def count_users(self, role_id: int) -> int:
        """Count members that are not soft-deleted."""
        result = await self.session.execute(
            select(func.count(UserRole.id))
            .join(User, User.id == UserRole.user_id)
            .where(UserRole.role_id == role_id, User.deleted_at.is_(None))
        )
        return int(result.scalar_one())

    async def count_users_by_role(self) -> dict[int, int]:
        result = await self.session.execute(
            select(UserRole.role_id, func.count(UserRole.id))
            .join(User, User.id == UserRole.user_id)
            .where(User.deleted_at.is_(None))
            .group_by(UserRole.role_id)
        )
        return {role_id: int(count) for role_id, count in result.all()}

    async def get_member_ids(self, role_id: int) -> list[int]:
        """All member ids, soft-deleted users included."""
        result = await self.session.execute(
            select(UserRole.user_id).where(UserRole.role_id == role_id).order_by(UserRole.user_id)
        )
        return list(result.scalars().all())

    async def get_user_roles(self, user_id: int) -> list[Role]:
        result = await self.session.execute(
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    async def sync_user_roles(
        self, user_id: int, role_ids: Iterable[int], granted_by: int | None = None
    ) -> None:
        """Make the user's role set exactly ``role_ids``.

        Roles the user keeps retain their original ``granted_at``/``granted_by``.
        """
        wanted = set(role_ids)
        result = await self.session.execute(
            select(UserRole.role_id).where(UserRole.user_id == user_id)
        )
        current = set(result.scalars().all())
        if current - wanted:
            await self.session.execute(
                delete(UserRole).where(
                    UserRole.user_id == user_id, UserRole.role_id.in_(current - wanted)
                )
            )
        for role_id in sorted(wanted - current):
            self.session.add(UserRole(user_id=user_id, role_id=role_id, granted_by=granted_by))
        await self.session.flush()

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission


class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str, module: str, description: str | None = None) -> Permission:
        permission = Permission(name=name, module=module, description=description)
        self.session.add(permission)
        await self.session.flush()
        return permission

    async def get_by_id(self, permission_id: int) -> Permission | None:
        return await self.session.get(Permission, permission_id)

    async def get_by_name(self, name: str) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(Permission.name == name)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(
            select(Permission).order_by(Permission.module, Permission.name)
        )
        return list(result.scalars().all())

    async def get_existing_ids(self, permission_ids: Iterable[int]) -> set[int]:
        ids = set(permission_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(Permission.id).where(Permission.id.in_(ids))
        )
        return set(result.scalars().all())

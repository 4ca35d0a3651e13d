from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User
from ..models.user_role import UserRole


USER_SORT_FIELDS = {"id", "name", "email", "is_active", "created_at", "updated_at"}


@dataclass
class UserFilter:
    name: str | None = None
    email: str | None = None
    is_active: bool | None = None
    role_id: int | None = None
    sort_by: str = "created_at"
    sort_direction: str = "desc"


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        avatar: str | None = None,
        is_active: bool = True,
        email_verified_at: datetime | None = None,
    ) -> User:
        user = User(
            name=name,
            email=email,
            password_hash=password_hash,
            avatar=avatar,
            is_active=is_active,
            email_verified_at=email_verified_at,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int, *, include_deleted: bool = False) -> User | None:
        query = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str, *, include_deleted: bool = False) -> User | None:
        query = select(User).where(User.email == email)
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        result = await self.session.execute(query)
        return result.scalars().first()

    async def email_taken(self, email: str, *, exclude_id: int | None = None) -> bool:
        # Soft-deleted rows still hold the unique email
        query = select(User.id).where(User.email == email)
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        result = await self.session.execute(query.limit(1))
        return result.first() is not None

    async def update(self, user: User) -> User:
        await self.session.flush()
        return user

    async def list_paginated(
        self, filters: UserFilter, *, page: int = 1, per_page: int = 15
    ) -> tuple[list[User], int]:
        conditions = [User.deleted_at.is_(None)]
        if filters.name:
            conditions.append(User.name.ilike(f"%{filters.name}%"))
        if filters.email:
            conditions.append(User.email.ilike(f"%{filters.email}%"))
        if filters.is_active is not None:
            conditions.append(User.is_active.is_(filters.is_active))
        if filters.role_id is not None:
            conditions.append(
                User.id.in_(select(UserRole.user_id).where(UserRole.role_id == filters.role_id))
            )

        total_result = await self.session.execute(
            select(func.count(User.id)).where(*conditions)
        )
        total = int(total_result.scalar_one())

        sort_column = getattr(User, filters.sort_by)
        ordering = sort_column.asc() if filters.sort_direction == "asc" else sort_column.desc()
        result = await self.session.execute(
            select(User)
            .where(*conditions)
            .order_by(ordering, User.id.asc() if filters.sort_direction == "asc" else User.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        return list(result.scalars().all()), total

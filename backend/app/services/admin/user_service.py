import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.role import RoleRepository
from ...crud.session_token import SessionTokenRepository
from ...crud.user import USER_SORT_FIELDS, UserFilter, UserRepository
from ...errors import DuplicateEmailError, InvalidReferenceError, NotFoundError, ValidationError
from ...models.user import User
from ...utils.security import hash_password
from ...utils.time import utcnow
from ..audit.audit_service import AuditContext, record_audit
from .permission_cache import PermissionCache

logger = logging.getLogger("rbac_admin.users")

USER_RESOURCE = "users"
UPDATABLE_USER_FIELDS = ("name", "email", "avatar", "is_active")


def user_snapshot(user: User) -> dict[str, Any]:
    return {
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
        "is_active": user.is_active,
        "roles": [role.id for role in user.roles],
    }


class UserService:
    def __init__(self, session: AsyncSession, cache: PermissionCache):
        self.session = session
        self.cache = cache
        self.user_repo = UserRepository(session)
        self.role_repo = RoleRepository(session)
        self.token_repo = SessionTokenRepository(session)

    async def list_users(
        self, filters: UserFilter | None = None, *, page: int = 1, per_page: int = 15
    ) -> tuple[list[User], int]:
        filters = filters or UserFilter()
        if filters.sort_by not in USER_SORT_FIELDS:
            raise ValidationError.for_field("sort_by", "Unsupported sort field.")
        if filters.sort_direction not in {"asc", "desc"}:
            raise ValidationError.for_field("sort_direction", "Sort direction must be asc or desc.")
        return await self.user_repo.list_paginated(filters, page=page, per_page=per_page)

    async def get_user(self, user_id: int) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    async def _ensure_roles_exist(self, role_ids: Iterable[int]) -> None:
        requested = set(role_ids)
        invalid = sorted(requested - await self.role_repo.get_existing_ids(requested))
        if invalid:
            raise InvalidReferenceError("role_ids", invalid)

    async def create_user(
        self, data: dict[str, Any], *, context: AuditContext | None = None
    ) -> User:
        """Create a user with optional initial roles in one transaction.

        Email comparison is exact: addresses differing only in case are
        distinct users.

        Raises:
            DuplicateEmailError: If the email is already registered
            InvalidReferenceError: If any role id does not exist
        """
        if await self.user_repo.email_taken(data["email"]):
            raise DuplicateEmailError(details={"email": ["The email has already been taken."]})
        role_ids = list(data.get("role_ids") or [])
        await self._ensure_roles_exist(role_ids)

        try:
            user = await self.user_repo.create(
                name=data["name"],
                email=data["email"],
                password_hash=hash_password(data["password"]),
                avatar=data.get("avatar"),
                is_active=data.get("is_active", True),
                email_verified_at=utcnow() if data.get("email_verified") else None,
            )
            if role_ids:
                granted_by = context.user_id if context else None
                await self.role_repo.sync_user_roles(user.id, role_ids, granted_by=granted_by)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        # A fresh id never has a cache entry, but a reused id might
        await self.cache.invalidate(user.id)
        user = await self.get_user(user.id)
        logger.info("User created user_id=%s", user.id)
        snapshot = user_snapshot(user)
        await record_audit(
            self.session, lambda audit: audit.log_create(USER_RESOURCE, user.id, snapshot, context)
        )
        return user

    async def update_user(
        self,
        user_id: int,
        changes: dict[str, Any],
        *,
        context: AuditContext | None = None,
    ) -> User:
        """Apply a partial update; ``role_ids`` replaces the user's roles.

        Raises:
            NotFoundError: If the user does not exist or is deleted
            DuplicateEmailError: If the new email belongs to another user
            InvalidReferenceError: If any role id does not exist
        """
        user = await self.get_user(user_id)

        new_email = changes.get("email")
        if new_email and new_email != user.email:
            if await self.user_repo.email_taken(new_email, exclude_id=user_id):
                raise DuplicateEmailError(details={"email": ["The email has already been taken."]})

        role_ids = changes.get("role_ids")
        if role_ids is not None:
            await self._ensure_roles_exist(role_ids)

        old_values = user_snapshot(user)

        try:
            for field in UPDATABLE_USER_FIELDS:
                if field not in changes:
                    continue
                if field != "avatar" and changes[field] is None:
                    continue
                setattr(user, field, changes[field])
            if changes.get("password"):
                user.password_hash = hash_password(changes["password"])
            await self.user_repo.update(user)
            if role_ids is not None:
                granted_by = context.user_id if context else None
                await self.role_repo.sync_user_roles(user_id, role_ids, granted_by=granted_by)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if role_ids is not None:
            await self.cache.invalidate(user_id)
        user = await self.get_user(user_id)
        new_values = user_snapshot(user)
        if changes.get("password"):
            new_values["password"] = changes["password"]
        await record_audit(
            self.session,
            lambda audit: audit.log_update(USER_RESOURCE, user_id, old_values, new_values, context),
        )
        return user

    async def assign_roles(
        self,
        user_id: int,
        role_ids: list[int],
        *,
        context: AuditContext | None = None,
    ) -> User:
        """Replace the user's roles and drop their cached permissions."""
        user = await self.get_user(user_id)
        await self._ensure_roles_exist(role_ids)
        old_values = {"roles": [role.id for role in user.roles]}

        try:
            granted_by = context.user_id if context else None
            await self.role_repo.sync_user_roles(user_id, role_ids, granted_by=granted_by)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.cache.invalidate(user_id)
        user = await self.get_user(user_id)
        new_values = {"roles": [role.id for role in user.roles]}
        await record_audit(
            self.session,
            lambda audit: audit.log_update(USER_RESOURCE, user_id, old_values, new_values, context),
        )
        return user

    async def delete_user(self, user_id: int, *, context: AuditContext | None = None) -> None:
        """Soft delete the user and revoke every session they hold."""
        user = await self.get_user(user_id)
        old_values = user_snapshot(user)

        try:
            revoked = await self.token_repo.revoke_all_for_user(user_id)
            user.deleted_at = utcnow()
            await self.user_repo.update(user)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.cache.invalidate(user_id)
        logger.info("User soft-deleted user_id=%s revoked_sessions=%s", user_id, revoked)
        await record_audit(
            self.session, lambda audit: audit.log_delete(USER_RESOURCE, user_id, old_values, context)
        )

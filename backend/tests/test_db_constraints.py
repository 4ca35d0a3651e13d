"""
Database constraints behind the RBAC tables.

Junction rows are unique per pair, deleting a role or permission cascades to
its junction rows, and the audit table only accepts known actions.
"""
import pytest
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError

from app.models import AuditLog, Permission, Role, RolePermission, User, UserRole
from tests.rbac_helpers import make_permission, make_role, make_user


class TestUserRoleUniqueConstraint:
    """UNIQUE(user_id, role_id) on user_roles."""

    @pytest.mark.anyio
    async def test_duplicate_role_assignment_prevented(self, session):
        role = await make_role(session, "Staff")
        user = await make_user(session, "staff@example.com", [role])

        session.add(UserRole(user_id=user.id, role_id=role.id))

        with pytest.raises(IntegrityError) as exc_info:
            await session.commit()

        assert "unique" in str(exc_info.value).lower()

    @pytest.mark.anyio
    async def test_same_role_different_users_allowed(self, session):
        role = await make_role(session, "Staff")
        await make_user(session, "one@example.com", [role])
        await make_user(session, "two@example.com", [role])

        result = await session.execute(select(UserRole).where(UserRole.role_id == role.id))
        assert len(result.scalars().all()) == 2


class TestRolePermissionUniqueConstraint:
    """UNIQUE(role_id, permission_id) on role_permissions."""

    @pytest.mark.anyio
    async def test_duplicate_permission_grant_prevented(self, session):
        permission = await make_permission(session, "users.view")
        role = await make_role(session, "Viewer", [permission])

        session.add(RolePermission(role_id=role.id, permission_id=permission.id))

        with pytest.raises(IntegrityError):
            await session.commit()


class TestNameUniqueness:
    @pytest.mark.anyio
    async def test_role_names_are_unique(self, session):
        await make_role(session, "Manager")

        session.add(Role(name="Manager"))

        with pytest.raises(IntegrityError):
            await session.commit()

    @pytest.mark.anyio
    async def test_permission_names_are_unique(self, session):
        await make_permission(session, "users.view")

        session.add(Permission(name="users.view", module="users"))

        with pytest.raises(IntegrityError):
            await session.commit()


class TestCascades:
    """Removing a role or permission removes the junction rows that point at it."""

    @pytest.mark.anyio
    async def test_role_delete_cascades(self, session):
        permission = await make_permission(session, "users.view")
        role = await make_role(session, "Viewer", [permission])
        await make_user(session, "viewer@example.com", [role])

        await session.execute(delete(Role).where(Role.id == role.id))
        await session.commit()

        user_roles = await session.execute(select(UserRole).where(UserRole.role_id == role.id))
        grants = await session.execute(
            select(RolePermission).where(RolePermission.role_id == role.id)
        )
        assert user_roles.scalars().all() == []
        assert grants.scalars().all() == []

    @pytest.mark.anyio
    async def test_permission_delete_cascades(self, session):
        permission = await make_permission(session, "users.view")
        role = await make_role(session, "Viewer", [permission])

        await session.execute(delete(Permission).where(Permission.id == permission.id))
        await session.commit()

        grants = await session.execute(
            select(RolePermission).where(RolePermission.role_id == role.id)
        )
        assert grants.scalars().all() == []


class TestAuditLogConstraints:
    @pytest.mark.anyio
    async def test_unknown_action_rejected_by_database(self, session):
        with pytest.raises(IntegrityError):
            await session.execute(
                insert(AuditLog.__table__).values(action="export", resource="users")
            )

    def test_unknown_action_rejected_by_model(self):
        with pytest.raises(ValueError, match="Invalid audit action"):
            AuditLog(action="export", resource="users")

    @pytest.mark.anyio
    async def test_entry_survives_user_removal(self, session):
        user = await make_user(session, "gone@example.com")
        session.add(AuditLog(user_id=user.id, action="login", resource="auth", resource_id=user.id))
        await session.commit()

        await session.execute(delete(UserRole).where(UserRole.user_id == user.id))
        await session.execute(
            delete(User).where(User.id == user.id)
        )
        await session.commit()

        result = await session.execute(
            select(AuditLog.user_id).where(AuditLog.resource == "auth")
        )
        assert result.scalars().all() == [None]

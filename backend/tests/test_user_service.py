from datetime import timedelta

import pytest
from sqlalchemy import select

from app.crud.user import UserFilter
from app.errors import DuplicateEmailError, InvalidReferenceError, NotFoundError, ValidationError
from app.models.session_token import SessionToken
from app.models.user_role import UserRole
from app.services.admin.permission_service import PermissionService
from app.services.admin.user_service import UserService
from app.services.audit.audit_service import REDACTED, AuditContext
from app.utils.security import hash_token_id, verify_password
from app.utils.time import utcnow
from tests.rbac_helpers import audit_entries, make_permission, make_role, make_user


@pytest.mark.anyio
async def test_create_user_with_roles(session, permission_cache) -> None:
    view = await make_permission(session, "users.view")
    role = await make_role(session, "Viewer", [view])
    actor = await make_user(session, "actor@example.com")
    service = UserService(session, permission_cache)

    user = await service.create_user(
        {
            "name": "New Person",
            "email": "new@example.com",
            "password": "secret-pass",
            "role_ids": [role.id],
        },
        context=AuditContext(user_id=actor.id),
    )

    assert [r.name for r in user.roles] == ["Viewer"]
    assert verify_password("secret-pass", user.password_hash)
    assert await PermissionService(session, permission_cache).has_permission(user.id, "users.view")
    entries = await audit_entries(session, resource="users", action="create")
    assert entries[0].user_id == actor.id
    assert entries[0].resource_id == user.id


@pytest.mark.anyio
async def test_create_user_rejects_taken_email(session, permission_cache) -> None:
    await make_user(session, "taken@example.com")
    service = UserService(session, permission_cache)

    with pytest.raises(DuplicateEmailError):
        await service.create_user(
            {"name": "Dup", "email": "taken@example.com", "password": "secret-pass"}
        )


@pytest.mark.anyio
async def test_create_user_with_unknown_role_writes_nothing(session, permission_cache) -> None:
    service = UserService(session, permission_cache)

    with pytest.raises(InvalidReferenceError):
        await service.create_user(
            {"name": "Ghost", "email": "ghost@example.com", "password": "secret-pass", "role_ids": [77]}
        )

    assert await service.user_repo.get_by_email("ghost@example.com") is None


@pytest.mark.anyio
async def test_update_user_role_ids_takes_effect_immediately(session, permission_cache) -> None:
    view = await make_permission(session, "users.view")
    edit = await make_permission(session, "users.edit")
    viewer = await make_role(session, "Viewer", [view])
    editor = await make_role(session, "Editor", [edit])
    user = await make_user(session, "switch@example.com", [viewer])
    permissions = PermissionService(session, permission_cache)
    assert await permissions.effective_permissions(user.id) == {"users.view"}

    service = UserService(session, permission_cache)
    await service.update_user(user.id, {"role_ids": [editor.id]})

    assert await permissions.effective_permissions(user.id) == {"users.edit"}


@pytest.mark.anyio
async def test_update_user_redacts_password_in_audit(session, permission_cache) -> None:
    user = await make_user(session, "pw@example.com")
    service = UserService(session, permission_cache)

    updated = await service.update_user(
        user.id, {"name": "Renamed", "password": "another-pass"}, context=AuditContext()
    )

    assert updated.name == "Renamed"
    assert verify_password("another-pass", updated.password_hash)
    entry = (await audit_entries(session, resource="users", action="update"))[-1]
    assert entry.new_values["password"] == REDACTED
    assert entry.old_values["name"] == "Test User"
    assert entry.new_values["name"] == "Renamed"


@pytest.mark.anyio
async def test_update_user_email_uniqueness_excludes_self(session, permission_cache) -> None:
    user = await make_user(session, "self@example.com")
    await make_user(session, "other@example.com")
    service = UserService(session, permission_cache)

    await service.update_user(user.id, {"email": "self@example.com"})
    with pytest.raises(DuplicateEmailError):
        await service.update_user(user.id, {"email": "other@example.com"})


@pytest.mark.anyio
async def test_delete_user_soft_deletes_and_revokes_sessions(session, permission_cache) -> None:
    view = await make_permission(session, "users.view")
    role = await make_role(session, "Viewer", [view])
    user = await make_user(session, "leaving@example.com", [role])
    for token_id in ("one", "two"):
        session.add(
            SessionToken(
                user_id=user.id,
                token_hash=hash_token_id(token_id),
                expires_at=utcnow() + timedelta(hours=1),
            )
        )
    await session.commit()
    service = UserService(session, permission_cache)

    await service.delete_user(user.id)

    with pytest.raises(NotFoundError):
        await service.get_user(user.id)
    deleted = await service.user_repo.get_by_id(user.id, include_deleted=True)
    assert deleted.deleted_at is not None
    result = await session.execute(
        select(SessionToken)
        .where(SessionToken.user_id == user.id)
        .execution_options(populate_existing=True)
    )
    assert all(token.revoked_at is not None for token in result.scalars().all())
    entries = await audit_entries(session, resource="users", action="delete")
    assert entries[0].old_values["email"] == "leaving@example.com"


@pytest.mark.anyio
async def test_assign_roles_replaces_membership(session, permission_cache) -> None:
    first = await make_role(session, "First")
    second = await make_role(session, "Second")
    user = await make_user(session, "roles@example.com", [first])
    service = UserService(session, permission_cache)

    updated = await service.assign_roles(user.id, [second.id])

    assert [role.name for role in updated.roles] == ["Second"]


@pytest.mark.anyio
async def test_assign_roles_keeps_original_grant_of_retained_roles(session, permission_cache) -> None:
    first = await make_role(session, "First")
    second = await make_role(session, "Second")
    actor = await make_user(session, "granter@example.com")
    user = await make_user(session, "kept@example.com", [first])
    service = UserService(session, permission_cache)

    await service.assign_roles(user.id, [first.id, second.id], context=AuditContext(user_id=actor.id))

    result = await session.execute(
        select(UserRole.role_id, UserRole.granted_by).where(UserRole.user_id == user.id)
    )
    assert dict(result.all()) == {first.id: None, second.id: actor.id}


@pytest.mark.anyio
async def test_list_users_filters_and_paginates(session, permission_cache) -> None:
    staff = await make_role(session, "Staff")
    await make_user(session, "alice@example.com", [staff], name="Alice")
    await make_user(session, "bob@example.com", name="Bob", is_active=False)
    carol = await make_user(session, "carol@example.com", [staff], name="Carol")
    carol.deleted_at = utcnow()
    await session.commit()
    service = UserService(session, permission_cache)

    users, total = await service.list_users(UserFilter(role_id=staff.id))
    assert total == 1
    assert [user.name for user in users] == ["Alice"]

    users, total = await service.list_users(UserFilter(is_active=False))
    assert [user.name for user in users] == ["Bob"]

    users, total = await service.list_users(
        UserFilter(sort_by="name", sort_direction="asc"), page=2, per_page=1
    )
    assert total == 2
    assert [user.name for user in users] == ["Bob"]

    with pytest.raises(ValidationError):
        await service.list_users(UserFilter(sort_by="password_hash"))

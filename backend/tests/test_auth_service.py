import pytest

from app.errors import AuthError, DuplicateEmailError, ForbiddenError, RateLimitError, ValidationError
from app.security.token_inspection import session_hash_from_payload, validate_access_token
from app.services.admin.settings_service import SettingsService
from app.services.audit.audit_service import AuditContext
from app.services.auth.auth_service import AuthService
from tests.rbac_helpers import TEST_PASSWORD, audit_entries, make_permission, make_role, make_user

CLIENT = AuditContext(ip_address="203.0.113.7", user_agent="pytest")


def make_service(session, permission_cache, cache_backend) -> AuthService:
    return AuthService(session, permission_cache, SettingsService(session, cache_backend))


@pytest.mark.anyio
async def test_login_opens_session_bound_to_token(session, permission_cache, cache_backend) -> None:
    user = await make_user(session, "login@example.com")
    service = make_service(session, permission_cache, cache_backend)

    result = await service.login("login@example.com", TEST_PASSWORD, context=CLIENT)

    payload = validate_access_token(result.access_token)
    assert payload["sub"] == str(user.id)
    stored = await service.token_repo.get_by_hash(session_hash_from_payload(payload))
    assert stored is not None
    assert stored.user_id == user.id
    assert stored.revoked_at is None
    assert result.token_type == "Bearer"
    entries = await audit_entries(session, action="login")
    assert entries[0].user_id == user.id
    assert entries[0].ip_address == "203.0.113.7"


@pytest.mark.anyio
async def test_login_rejects_wrong_password(session, permission_cache, cache_backend) -> None:
    await make_user(session, "login@example.com")
    service = make_service(session, permission_cache, cache_backend)

    with pytest.raises(AuthError):
        await service.login("login@example.com", "wrong-password", context=CLIENT)
    with pytest.raises(AuthError):
        await service.login("nobody@example.com", TEST_PASSWORD, context=CLIENT)

    assert await audit_entries(session, action="login") == []


@pytest.mark.anyio
async def test_login_locks_out_after_repeated_failures(
    session, permission_cache, cache_backend
) -> None:
    await make_user(session, "locked@example.com")
    service = make_service(session, permission_cache, cache_backend)

    for _ in range(5):
        with pytest.raises(AuthError):
            await service.login("locked@example.com", "wrong-password", context=CLIENT)

    with pytest.raises(RateLimitError):
        await service.login("locked@example.com", TEST_PASSWORD, context=CLIENT)

    # Another client address is tracked separately
    other = AuditContext(ip_address="198.51.100.2")
    assert (await service.login("locked@example.com", TEST_PASSWORD, context=other)).user


@pytest.mark.anyio
async def test_successful_login_resets_failures(session, permission_cache, cache_backend) -> None:
    await make_user(session, "reset@example.com")
    service = make_service(session, permission_cache, cache_backend)

    for _ in range(4):
        with pytest.raises(AuthError):
            await service.login("reset@example.com", "wrong-password", context=CLIENT)
    await service.login("reset@example.com", TEST_PASSWORD, context=CLIENT)

    for _ in range(4):
        with pytest.raises(AuthError):
            await service.login("reset@example.com", "wrong-password", context=CLIENT)
    assert await service.login("reset@example.com", TEST_PASSWORD, context=CLIENT)


@pytest.mark.anyio
async def test_login_requires_verified_email(session, permission_cache, cache_backend) -> None:
    await make_user(session, "unverified@example.com", verified=False)
    settings_service = SettingsService(session, cache_backend)
    service = AuthService(session, permission_cache, settings_service)

    with pytest.raises(ValidationError):
        await service.login("unverified@example.com", TEST_PASSWORD)

    await settings_service.set("require_email_verification", False)
    assert await service.login("unverified@example.com", TEST_PASSWORD)


@pytest.mark.anyio
async def test_login_rejects_inactive_user(session, permission_cache, cache_backend) -> None:
    await make_user(session, "inactive@example.com", is_active=False)
    service = make_service(session, permission_cache, cache_backend)

    with pytest.raises(ValidationError) as exc_info:
        await service.login("inactive@example.com", TEST_PASSWORD)

    assert "deactivated" in exc_info.value.details["email"][0]


@pytest.mark.anyio
async def test_session_lifetime_follows_timeout_setting(
    session, permission_cache, cache_backend
) -> None:
    await make_user(session, "timeout@example.com")
    settings_service = SettingsService(session, cache_backend)
    await settings_service.set("session_timeout", 30)
    service = AuthService(session, permission_cache, settings_service)

    result = await service.login("timeout@example.com", TEST_PASSWORD)

    payload = validate_access_token(result.access_token)
    assert payload["exp"] - payload["iat"] == pytest.approx(30 * 60, abs=2)


@pytest.mark.anyio
async def test_register_creates_unverified_user(session, permission_cache, cache_backend) -> None:
    service = make_service(session, permission_cache, cache_backend)

    user = await service.register(
        {"name": "Newcomer", "email": "new@example.com", "password": "long-enough"},
        context=CLIENT,
    )

    assert user.is_active is True
    assert user.email_verified_at is None
    assert user.roles == []
    entry = (await audit_entries(session, resource="users", action="create"))[0]
    assert entry.user_id == user.id
    assert entry.new_values["password"] == "[REDACTED]"


@pytest.mark.anyio
async def test_register_validations(session, permission_cache, cache_backend) -> None:
    await make_user(session, "taken@example.com")
    settings_service = SettingsService(session, cache_backend)
    service = AuthService(session, permission_cache, settings_service)

    with pytest.raises(DuplicateEmailError):
        await service.register({"name": "Dup", "email": "taken@example.com", "password": "long-enough"})
    with pytest.raises(ValidationError):
        await service.register({"name": "Short", "email": "short@example.com", "password": "short"})

    await settings_service.set("allow_registration", False)
    with pytest.raises(ForbiddenError):
        await service.register({"name": "Late", "email": "late@example.com", "password": "long-enough"})


@pytest.mark.anyio
async def test_logout_revokes_only_current_session(session, permission_cache, cache_backend) -> None:
    user = await make_user(session, "logout@example.com")
    service = make_service(session, permission_cache, cache_backend)
    first = await service.login("logout@example.com", TEST_PASSWORD)
    second = await service.login("logout@example.com", TEST_PASSWORD)
    first_token = await service.token_repo.get_by_hash(
        session_hash_from_payload(validate_access_token(first.access_token))
    )

    await service.logout(user, first_token, context=AuditContext(user_id=user.id))

    second_token = await service.token_repo.get_by_hash(
        session_hash_from_payload(validate_access_token(second.access_token))
    )
    assert first_token.revoked_at is not None
    assert second_token.revoked_at is None
    assert len(await audit_entries(session, action="logout")) == 1


@pytest.mark.anyio
async def test_current_user_payload_lists_permissions(
    session, permission_cache, cache_backend
) -> None:
    view = await make_permission(session, "users.view")
    roles_view = await make_permission(session, "roles.view")
    role = await make_role(session, "Manager", [view, roles_view])
    user = await make_user(session, "me@example.com", [role])
    service = make_service(session, permission_cache, cache_backend)
    user = await service.user_repo.get_by_id(user.id)

    payload = await service.current_user_payload(user)

    assert payload["email"] == "me@example.com"
    assert payload["permissions"] == ["roles.view", "users.view"]
    assert "password_hash" not in payload


@pytest.mark.anyio
async def test_update_profile_changes_name_and_email(session, permission_cache, cache_backend) -> None:
    user = await make_user(session, "me@example.com", name="Old Name")
    await make_user(session, "taken@example.com")
    service = make_service(session, permission_cache, cache_backend)

    with pytest.raises(DuplicateEmailError):
        await service.update_profile(user, {"email": "taken@example.com"})

    updated = await service.update_profile(
        user, {"name": "New Name", "email": "new@example.com"}, context=AuditContext(user_id=user.id)
    )

    assert (updated.name, updated.email) == ("New Name", "new@example.com")
    entry = (await audit_entries(session, resource="users", action="update"))[-1]
    assert entry.user_id == user.id
    assert entry.old_values == {"name": "Old Name", "email": "me@example.com"}


@pytest.mark.anyio
async def test_change_password_checks_current_password(session, permission_cache, cache_backend) -> None:
    user = await make_user(session, "pw@example.com")
    service = make_service(session, permission_cache, cache_backend)

    with pytest.raises(ValidationError) as exc_info:
        await service.change_password(user, "wrong-password", "brand-new-pass", "brand-new-pass")
    assert "current_password" in exc_info.value.details
    with pytest.raises(ValidationError):
        await service.change_password(user, TEST_PASSWORD, "brand-new-pass", "different-pass")

    await service.change_password(
        user, TEST_PASSWORD, "brand-new-pass", "brand-new-pass", context=AuditContext(user_id=user.id)
    )

    assert await service.login("pw@example.com", "brand-new-pass")
    entry = (await audit_entries(session, resource="users", action="update"))[-1]
    assert entry.old_values == {"current_password": "[REDACTED]"}
    assert entry.new_values == {"password": "[REDACTED]"}

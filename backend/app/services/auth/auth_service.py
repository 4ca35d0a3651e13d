import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...application.auth_rate_limit import (
    LOGIN_LOCKOUT_MESSAGE,
    RateLimitExceededError,
    check_login_rate_limit,
    record_login_failure,
    reset_login_limit,
)
from ...crud.session_token import SessionTokenRepository
from ...crud.user import UserRepository
from ...errors import AuthError, DuplicateEmailError, ForbiddenError, RateLimitError, ValidationError
from ...models.session_token import SessionToken
from ...models.user import User
from ...utils.security import (
    create_access_token,
    hash_password,
    hash_token_id,
    new_token_id,
    session_lifetime,
    verify_password,
)
from ...utils.time import utcnow
from ..admin.permission_cache import PermissionCache
from ..admin.permission_service import PermissionService
from ..admin.settings_service import SettingsService
from ..audit.audit_service import AuditContext, record_audit

logger = logging.getLogger("rbac_admin.auth")

MIN_PASSWORD_LENGTH = 8
PROFILE_FIELDS = ("name", "email")


@dataclass
class LoginResult:
    user: User
    access_token: str
    expires_at: datetime
    token_type: str = "Bearer"


class AuthService:
    def __init__(
        self,
        session: AsyncSession,
        cache: PermissionCache,
        settings_service: SettingsService,
    ):
        self.session = session
        self.user_repo = UserRepository(session)
        self.token_repo = SessionTokenRepository(session)
        self.permission_service = PermissionService(session, cache)
        self.settings_service = settings_service

    async def register(self, data: dict[str, Any], *, context: AuditContext | None = None) -> User:
        """Self-service sign up, gated by the ``allow_registration`` setting.

        Raises:
            ForbiddenError: If registration is switched off
            DuplicateEmailError: If the email is already registered
            ValidationError: If the password is too short
        """
        if not await self.settings_service.get("allow_registration", True):
            raise ForbiddenError("Registration is currently disabled.")
        if await self.user_repo.email_taken(data["email"]):
            raise DuplicateEmailError(details={"email": ["The email has already been taken."]})
        if len(data["password"]) < MIN_PASSWORD_LENGTH:
            raise ValidationError.for_field(
                "password", f"The password must be at least {MIN_PASSWORD_LENGTH} characters."
            )

        require_verification = await self.settings_service.get("require_email_verification", True)
        try:
            user = await self.user_repo.create(
                name=data["name"],
                email=data["email"],
                password_hash=hash_password(data["password"]),
                is_active=True,
                email_verified_at=None if require_verification else utcnow(),
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        user = await self.user_repo.get_by_id(user.id)
        logger.info("User registered user_id=%s", user.id)
        snapshot = {"name": user.name, "email": user.email, "password": data["password"]}
        await record_audit(
            self.session,
            lambda audit: audit.log("create", "users", user.id, context, new_values=snapshot, user_id=user.id),
        )
        return user

    async def login(
        self,
        email: str,
        password: str,
        *,
        context: AuditContext | None = None,
    ) -> LoginResult:
        """Check credentials and open a new session.

        Raises:
            RateLimitError: After too many failed attempts for this email
            AuthError: If the credentials are wrong
            ValidationError: If the email is unverified or the account inactive
        """
        client_ip = context.ip_address if context else None
        try:
            limiter_key = check_login_rate_limit(email, client_ip)
        except RateLimitExceededError:
            logger.warning("Login attempts locked out ip=%s", client_ip or "n/a")
            raise RateLimitError(LOGIN_LOCKOUT_MESSAGE) from None

        user = await self.user_repo.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            record_login_failure(limiter_key)
            raise AuthError("The provided credentials are incorrect.")

        if not user.is_email_verified and await self.settings_service.get(
            "require_email_verification", True
        ):
            raise ValidationError.for_field(
                "email", "Please verify your email address before logging in."
            )
        if not user.is_active:
            raise ValidationError.for_field("email", "Your account has been deactivated.")

        reset_login_limit(limiter_key)

        timeout_minutes = await self.settings_service.get("session_timeout")
        expires_at = utcnow() + session_lifetime(timeout_minutes)
        token_id = new_token_id()
        try:
            await self.token_repo.create(user.id, hash_token_id(token_id), expires_at)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("User logged in user_id=%s", user.id)
        await record_audit(self.session, lambda audit: audit.log_login(user.id, context))
        return LoginResult(
            user=user,
            access_token=create_access_token(user.id, token_id, expires_at),
            expires_at=expires_at,
        )

    async def logout(
        self,
        user: User,
        session_token: SessionToken,
        *,
        context: AuditContext | None = None,
    ) -> None:
        """Revoke the session the current token belongs to."""
        try:
            await self.token_repo.revoke(session_token)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("User logged out user_id=%s session_id=%s", user.id, session_token.id)
        await record_audit(self.session, lambda audit: audit.log_logout(user.id, context))

    async def update_profile(
        self,
        user: User,
        changes: dict[str, Any],
        *,
        context: AuditContext | None = None,
    ) -> User:
        """Let a user change their own name and email.

        Raises:
            DuplicateEmailError: If the new email belongs to another user
        """
        new_email = changes.get("email")
        if new_email and new_email != user.email:
            if await self.user_repo.email_taken(new_email, exclude_id=user.id):
                raise DuplicateEmailError(details={"email": ["This email is already registered."]})

        old_values = {"name": user.name, "email": user.email}
        try:
            for field in PROFILE_FIELDS:
                if changes.get(field):
                    setattr(user, field, changes[field])
            await self.user_repo.update(user)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        user = await self.user_repo.get_by_id(user.id)
        new_values = {"name": user.name, "email": user.email}
        await record_audit(
            self.session,
            lambda audit: audit.log_update("users", user.id, old_values, new_values, context),
        )
        return user

    async def change_password(
        self,
        user: User,
        current_password: str,
        password: str,
        password_confirmation: str,
        *,
        context: AuditContext | None = None,
    ) -> None:
        """Replace the user's password after checking the one they have now.

        Raises:
            ValidationError: If the current password is wrong, or the new one
                is too short or not confirmed
        """
        if not verify_password(current_password, user.password_hash):
            raise ValidationError.for_field("current_password", "The current password is incorrect.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError.for_field(
                "password", f"The password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if password != password_confirmation:
            raise ValidationError.for_field("password", "The password confirmation does not match.")

        try:
            user.password_hash = hash_password(password)
            await self.user_repo.update(user)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Password changed user_id=%s", user.id)
        await record_audit(
            self.session,
            lambda audit: audit.log_update(
                "users",
                user.id,
                {"current_password": current_password},
                {"password": password},
                context,
            ),
        )

    async def current_user_payload(self, user: User) -> dict[str, Any]:
        permissions = await self.permission_service.effective_permissions(user.id)
        data = user.to_dict()
        data["permissions"] = sorted(permissions)
        return data

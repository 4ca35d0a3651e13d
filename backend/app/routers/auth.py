from dataclasses import replace

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import (
    SessionUser,
    get_current_session_user,
    get_current_user,
    get_db,
    get_permission_cache,
    get_request_context,
    get_settings_service,
)
from ..errors import success_payload
from ..models.user import User
from ..schemas.auth import UserLogin, UserRegister
from ..services.admin.permission_cache import PermissionCache
from ..services.admin.settings_service import SettingsService
from ..services.audit.audit_service import AuditContext
from ..services.auth.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    settings_service: SettingsService = Depends(get_settings_service),
) -> AuthService:
    return AuthService(db, cache, settings_service)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: UserRegister,
    context: AuditContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    user = await service.register(payload.model_dump(), context=context)
    return success_payload(
        user.to_dict(),
        message="Registration successful.",
    )


@router.post("/login")
async def login(
    payload: UserLogin,
    context: AuditContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.login(payload.email, payload.password, context=context)
    return success_payload(
        {
            "user": await service.current_user_payload(result.user),
            "access_token": result.access_token,
            "token_type": result.token_type,
            "expires_at": result.expires_at.isoformat(),
        },
        message="Login successful.",
    )


@router.post("/logout")
async def logout(
    context: AuditContext = Depends(get_request_context),
    current: SessionUser = Depends(get_current_session_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    await service.logout(
        current.user,
        current.session_token,
        context=replace(context, user_id=current.user.id),
    )
    return success_payload(message="Logged out successfully.")


@router.get("/me")
async def me(
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return success_payload(await service.current_user_payload(user))

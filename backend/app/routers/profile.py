from dataclasses import replace

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user, get_request_context
from ..errors import success_payload
from ..models.user import User
from ..schemas.auth import PasswordUpdate, ProfileUpdate
from ..services.audit.audit_service import AuditContext
from ..services.auth.auth_service import AuthService
from .auth import get_auth_service

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
async def show_profile(user: User = Depends(get_current_user)) -> dict:
    return success_payload(user.to_dict())


@router.put("")
async def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = await service.update_profile(
        user,
        payload.model_dump(exclude_unset=True),
        context=replace(context, user_id=user.id),
    )
    return success_payload(updated.to_dict(), message="Profile updated successfully.")


@router.put("/password")
async def update_password(
    payload: PasswordUpdate,
    user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    await service.change_password(
        user,
        payload.current_password,
        payload.password,
        payload.password_confirmation,
        context=replace(context, user_id=user.id),
    )
    return success_payload(message="Password updated successfully.")

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import permissions
from ...auth.guard import require_permission
from ...crud.user import UserFilter
from ...dependencies import get_audit_context, get_db, get_permission_cache, get_settings_service
from ...errors import success_payload
from ...schemas.common import pagination_payload
from ...schemas.user import UserCreate, UserRolesAssign, UserUpdate
from ...services.admin.permission_cache import PermissionCache
from ...services.admin.settings_service import SettingsService
from ...services.admin.user_service import UserService
from ...services.audit.audit_service import AuditContext

router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> UserService:
    return UserService(db, cache)


@router.get("", dependencies=[Depends(require_permission(permissions.USERS_VIEW))])
async def list_users(
    name: str | None = Query(None),
    email: str | None = Query(None),
    is_active: bool | None = Query(None),
    role_id: int | None = Query(None),
    sort_by: str = Query("created_at"),
    sort_direction: str = Query("desc"),
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1, le=100),
    service: UserService = Depends(get_user_service),
    settings_service: SettingsService = Depends(get_settings_service),
) -> dict:
    if per_page is None:
        per_page = await settings_service.get("items_per_page", 15) or 15
    filters = UserFilter(
        name=name,
        email=email,
        is_active=is_active,
        role_id=role_id,
        sort_by=sort_by,
        sort_direction=sort_direction.lower(),
    )
    users, total = await service.list_users(filters, page=page, per_page=per_page)
    return success_payload(
        pagination_payload(
            [user.to_dict() for user in users], total=total, page=page, per_page=per_page
        )
    )


@router.get("/{user_id}", dependencies=[Depends(require_permission(permissions.USERS_VIEW))])
async def get_user(user_id: int, service: UserService = Depends(get_user_service)) -> dict:
    user = await service.get_user(user_id)
    return success_payload(user.to_dict())


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission(permissions.USERS_CREATE))],
)
async def create_user(
    payload: UserCreate,
    context: AuditContext = Depends(get_audit_context),
    service: UserService = Depends(get_user_service),
) -> dict:
    user = await service.create_user(payload.model_dump(), context=context)
    return success_payload(user.to_dict(), message="User created successfully.")


@router.put("/{user_id}", dependencies=[Depends(require_permission(permissions.USERS_EDIT))])
async def update_user(
    user_id: int,
    payload: UserUpdate,
    context: AuditContext = Depends(get_audit_context),
    service: UserService = Depends(get_user_service),
) -> dict:
    user = await service.update_user(
        user_id, payload.model_dump(exclude_unset=True), context=context
    )
    return success_payload(user.to_dict(), message="User updated successfully.")


@router.post(
    "/{user_id}/roles", dependencies=[Depends(require_permission(permissions.USERS_EDIT))]
)
async def assign_roles(
    user_id: int,
    payload: UserRolesAssign,
    context: AuditContext = Depends(get_audit_context),
    service: UserService = Depends(get_user_service),
) -> dict:
    user = await service.assign_roles(user_id, payload.role_ids, context=context)
    return success_payload(user.to_dict(), message="Roles assigned successfully.")


@router.delete("/{user_id}", dependencies=[Depends(require_permission(permissions.USERS_DELETE))])
async def delete_user(
    user_id: int,
    context: AuditContext = Depends(get_audit_context),
    service: UserService = Depends(get_user_service),
) -> dict:
    await service.delete_user(user_id, context=context)
    return success_payload(message="User deleted successfully.")

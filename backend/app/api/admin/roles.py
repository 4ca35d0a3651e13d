from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import permissions
from ...auth.guard import require_permission
from ...dependencies import get_audit_context, get_db, get_permission_cache
from ...errors import SystemRoleProtectedError, success_payload
from ...schemas.role import RoleCreate, RolePermissionsAssign, RoleUpdate
from ...services.admin.permission_cache import PermissionCache
from ...services.admin.role_service import RoleService
from ...services.audit.audit_service import AuditContext

router = APIRouter(prefix="/roles", tags=["roles"])


def get_role_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> RoleService:
    return RoleService(db, cache)


@router.get("", dependencies=[Depends(require_permission(permissions.ROLES_VIEW))])
async def list_roles(service: RoleService = Depends(get_role_service)) -> dict:
    roles = await service.list_roles()
    return success_payload([role.to_dict(users_count=count) for role, count in roles])


@router.get("/{role_id}", dependencies=[Depends(require_permission(permissions.ROLES_VIEW))])
async def get_role(role_id: int, service: RoleService = Depends(get_role_service)) -> dict:
    role = await service.get_role(role_id)
    users_count = await service.count_assigned_users(role_id)
    return success_payload(role.to_dict(users_count=users_count))


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission(permissions.ROLES_CREATE))],
)
async def create_role(
    payload: RoleCreate,
    context: AuditContext = Depends(get_audit_context),
    service: RoleService = Depends(get_role_service),
) -> dict:
    role = await service.create_role(
        payload.name,
        payload.description,
        payload.permission_ids,
        payload.is_system,
        context=context,
    )
    return success_payload(role.to_dict(), message="Role created successfully.")


@router.put("/{role_id}", dependencies=[Depends(require_permission(permissions.ROLES_EDIT))])
async def update_role(
    role_id: int,
    payload: RoleUpdate,
    context: AuditContext = Depends(get_audit_context),
    service: RoleService = Depends(get_role_service),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    # System roles keep their flag
    existing = await service.get_role(role_id)
    if existing.is_system and changes.get("is_system") is False:
        raise SystemRoleProtectedError("The system flag of a system role cannot be changed.")
    role = await service.update_role(role_id, changes, context=context)
    return success_payload(role.to_dict(), message="Role updated successfully.")


@router.post(
    "/{role_id}/permissions",
    dependencies=[Depends(require_permission(permissions.ROLES_EDIT))],
)
async def assign_permissions(
    role_id: int,
    payload: RolePermissionsAssign,
    context: AuditContext = Depends(get_audit_context),
    service: RoleService = Depends(get_role_service),
) -> dict:
    role = await service.assign_permissions(role_id, payload.permission_ids, context=context)
    return success_payload(role.to_dict(), message="Permissions assigned successfully.")


@router.delete("/{role_id}", dependencies=[Depends(require_permission(permissions.ROLES_DELETE))])
async def delete_role(
    role_id: int,
    context: AuditContext = Depends(get_audit_context),
    service: RoleService = Depends(get_role_service),
) -> dict:
    await service.delete_role(role_id, context=context)
    return success_payload(message="Role deleted successfully.")

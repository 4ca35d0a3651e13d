from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import permissions
from ...auth.guard import require_permission
from ...dependencies import get_db
from ...errors import success_payload
from ...services.admin.permission_service import PermissionService

router = APIRouter(
    prefix="/permissions",
    tags=["permissions"],
    dependencies=[Depends(require_permission(permissions.PERMISSIONS_VIEW))],
)


@router.get("")
async def list_permissions(db: AsyncSession = Depends(get_db)) -> dict:
    all_permissions = await PermissionService(db).get_all_permissions()
    return success_payload([permission.to_dict() for permission in all_permissions])


@router.get("/grouped")
async def list_permissions_grouped(db: AsyncSession = Depends(get_db)) -> dict:
    return success_payload(await PermissionService(db).get_permissions_grouped_by_module())

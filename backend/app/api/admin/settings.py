from fastapi import APIRouter, Depends

from ...auth import permissions
from ...auth.guard import require_permission
from ...dependencies import get_audit_context, get_settings_service
from ...errors import NotFoundError, success_payload
from ...schemas.setting import SettingsUpdate
from ...services.admin.settings_service import SettingsService
from ...services.audit.audit_service import AuditContext

router = APIRouter(prefix="/settings", tags=["settings"])

_view = [Depends(require_permission(permissions.SETTINGS_VIEW))]
_edit = [Depends(require_permission(permissions.SETTINGS_EDIT))]


@router.get("", dependencies=_view)
async def get_settings(service: SettingsService = Depends(get_settings_service)) -> dict:
    return success_payload(
        {
            "settings": await service.get_all(),
            "company": await service.get_company_info(),
            "preferences": await service.get_system_preferences(),
        }
    )


@router.put("", dependencies=_edit)
async def update_settings(
    payload: SettingsUpdate,
    context: AuditContext = Depends(get_audit_context),
    service: SettingsService = Depends(get_settings_service),
) -> dict:
    updated = await service.update_multiple(payload.settings, context=context)
    return success_payload(updated, message="Settings updated successfully.")


@router.delete("/logo", dependencies=_edit)
async def delete_logo(
    context: AuditContext = Depends(get_audit_context),
    service: SettingsService = Depends(get_settings_service),
) -> dict:
    await service.delete_logo(context=context)
    return success_payload(message="Logo deleted successfully.")


@router.post("/clear-cache", dependencies=_edit)
async def clear_cache(service: SettingsService = Depends(get_settings_service)) -> dict:
    await service.clear_cache()
    return success_payload(message="Settings cache cleared successfully.")


@router.get("/{key}", dependencies=_view)
async def get_setting(key: str, service: SettingsService = Depends(get_settings_service)) -> dict:
    missing = object()
    value = await service.get(key, missing)
    if value is missing:
        raise NotFoundError("Setting not found.")
    return success_payload({"key": key, "value": value})

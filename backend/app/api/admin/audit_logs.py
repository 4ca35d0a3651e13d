from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import permissions
from ...auth.guard import require_permission
from ...crud.audit_log import AuditLogFilter
from ...dependencies import get_db, get_settings_service
from ...errors import success_payload
from ...schemas.common import pagination_payload
from ...services.admin.settings_service import SettingsService
from ...services.audit.audit_service import AuditService
from ...utils.time import ensure_utc

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("", dependencies=[Depends(require_permission(permissions.AUDIT_LOGS_VIEW))])
async def list_audit_logs(
    user_id: int | None = Query(None),
    action: str | None = Query(None),
    resource: str | None = Query(None),
    resource_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    sort_direction: str = Query("desc"),
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    settings_service: SettingsService = Depends(get_settings_service),
) -> dict:
    """Browse the audit trail, newest entries first by default."""
    if per_page is None:
        per_page = await settings_service.get("items_per_page", 15) or 15
    filters = AuditLogFilter(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        start_date=ensure_utc(start_date) if start_date else None,
        end_date=ensure_utc(end_date) if end_date else None,
        sort_direction=sort_direction.lower(),
    )
    entries, total = await AuditService(db).get_logs(filters, page=page, per_page=per_page)
    return success_payload(
        pagination_payload(
            [entry.to_dict(include_user=True) for entry in entries],
            total=total,
            page=page,
            per_page=per_page,
        )
    )

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.audit_log import AuditLog


@dataclass
class AuditLogFilter:
    user_id: int | None = None
    action: str | None = None
    resource: str | None = None
    resource_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    sort_direction: str = "desc"


class AuditLogRepository:
    """Append-only access to audit_logs: entries are created and read, never changed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        user_id: int | None,
        action: str,
        resource: str,
        resource_id: int | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        audit_log = AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(audit_log)
        await self.session.flush()
        return audit_log

    async def get_by_id(self, audit_log_id: int) -> AuditLog | None:
        return await self.session.get(AuditLog, audit_log_id)

    async def list_paginated(
        self,
        filters: AuditLogFilter,
        *,
        page: int = 1,
        per_page: int = 15,
    ) -> tuple[list[AuditLog], int]:
        conditions = []
        if filters.user_id is not None:
            conditions.append(AuditLog.user_id == filters.user_id)
        if filters.action is not None:
            conditions.append(AuditLog.action == filters.action)
        if filters.resource is not None:
            conditions.append(AuditLog.resource == filters.resource)
        if filters.resource_id is not None:
            conditions.append(AuditLog.resource_id == filters.resource_id)
        if filters.start_date is not None:
            conditions.append(AuditLog.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(AuditLog.created_at <= filters.end_date)

        where_clause = and_(*conditions) if conditions else None

        count_query = select(func.count(AuditLog.id))
        query = select(AuditLog).options(selectinload(AuditLog.user))
        if where_clause is not None:
            count_query = count_query.where(where_clause)
            query = query.where(where_clause)

        total = int((await self.session.execute(count_query)).scalar_one())

        if filters.sort_direction == "asc":
            query = query.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        else:
            query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())

        result = await self.session.execute(
            query.limit(per_page).offset((page - 1) * per_page)
        )
        return list(result.scalars().all()), total

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.audit_log import AuditLogFilter, AuditLogRepository
from ...errors import ValidationError
from ...models.audit_log import AuditLog

logger = logging.getLogger("rbac_admin.audit")

REDACTED = "[REDACTED]"

# Keys whose values never reach the audit table
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "password_confirmation",
        "current_password",
        "new_password",
        "token",
        "api_token",
        "remember_token",
        "secret",
    }
)

_ACTOR_FROM_CONTEXT: Any = object()


@dataclass(frozen=True)
class AuditContext:
    """Who made the request and from where."""

    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def redact_sensitive(values: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return a copy of ``values`` with sensitive keys replaced by the marker.

    Only top-level keys are inspected.
    """
    if values is None:
        return None
    return {
        key: REDACTED if key in SENSITIVE_FIELDS else value
        for key, value in values.items()
    }


class AuditService:
    """Records mutations to the append-only audit log.

    Entries carry an explicit action and resource tag supplied by the caller;
    nothing is inferred from the request URL or method.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit_repo = AuditLogRepository(session)

    async def log(
        self,
        action: str,
        resource: str,
        resource_id: int | None = None,
        context: AuditContext | None = None,
        *,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        user_id: int | None = _ACTOR_FROM_CONTEXT,
    ) -> AuditLog:
        """Append one audit entry.

        Args:
            action: One of login, logout, create, update, delete
            resource: Resource tag, e.g. 'users'
            resource_id: Affected record id, if any
            context: Request context supplying actor, IP and user agent
            old_values: State before the change
            new_values: State after the change
            user_id: Explicit actor; defaults to the context's user, pass
                None for system-initiated entries

        Raises:
            ValueError: If action is not an allowed audit action
        """
        context = context or AuditContext()
        actor_id = context.user_id if user_id is _ACTOR_FROM_CONTEXT else user_id

        return await self.audit_repo.create(
            user_id=actor_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            old_values=redact_sensitive(old_values),
            new_values=redact_sensitive(new_values),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

    async def log_login(self, user_id: int, context: AuditContext | None = None) -> AuditLog:
        return await self.log("login", "auth", None, context, user_id=user_id)

    async def log_logout(self, user_id: int, context: AuditContext | None = None) -> AuditLog:
        return await self.log("logout", "auth", None, context, user_id=user_id)

    async def log_create(
        self,
        resource: str,
        resource_id: int | None,
        new_values: Mapping[str, Any],
        context: AuditContext | None = None,
    ) -> AuditLog:
        return await self.log("create", resource, resource_id, context, new_values=new_values)

    async def log_update(
        self,
        resource: str,
        resource_id: int | None,
        old_values: Mapping[str, Any],
        new_values: Mapping[str, Any],
        context: AuditContext | None = None,
    ) -> AuditLog:
        return await self.log(
            "update",
            resource,
            resource_id,
            context,
            old_values=old_values,
            new_values=new_values,
        )

    async def log_delete(
        self,
        resource: str,
        resource_id: int | None,
        old_values: Mapping[str, Any],
        context: AuditContext | None = None,
    ) -> AuditLog:
        return await self.log("delete", resource, resource_id, context, old_values=old_values)

    async def get_logs(
        self,
        filters: AuditLogFilter | None = None,
        *,
        page: int = 1,
        per_page: int = 15,
    ) -> tuple[list[AuditLog], int]:
        """Page through entries, newest first unless ``sort_direction`` is 'asc'.

        Raises:
            ValidationError: If start_date is after end_date
        """
        filters = filters or AuditLogFilter()
        if (
            filters.start_date is not None
            and filters.end_date is not None
            and filters.start_date > filters.end_date
        ):
            raise ValidationError.for_field(
                "end_date", "The end date must be a date after or equal to start date."
            )
        if filters.sort_direction not in {"asc", "desc"}:
            raise ValidationError.for_field("sort_direction", "Sort direction must be asc or desc.")
        return await self.audit_repo.list_paginated(filters, page=page, per_page=per_page)


async def record_audit(
    session: AsyncSession,
    write: Callable[[AuditService], Awaitable[AuditLog]],
) -> AuditLog | None:
    """Write an audit entry after the primary transaction has committed.

    The entry goes through its own session so a failure here cannot touch
    the caller's state; failures are logged and swallowed.
    """
    try:
        async with AsyncSession(bind=session.bind, expire_on_commit=False) as audit_session:
            entry = await write(AuditService(audit_session))
            await audit_session.commit()
            return entry
    except Exception:
        logger.exception("Failed to write audit log entry")
        return None

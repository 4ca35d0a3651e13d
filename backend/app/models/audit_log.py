from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ..utils.time import utcnow
from .base import Base

if TYPE_CHECKING:
    from .user import User


AUDIT_ACTIONS = ("login", "logout", "create", "update", "delete")


class AuditLogImmutableError(RuntimeError):
    """Raised when something tries to rewrite or remove an audit entry."""


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )  # NULL for system-initiated entries
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )  # e.g., 'users', 'roles', 'system_settings'
    resource_id: Mapped[int | None] = mapped_column(Integer, index=True)
    old_values: Mapped[dict | None] = mapped_column(JSON)
    new_values: Mapped[dict | None] = mapped_column(JSON)
    ip_address: Mapped[str | None] = mapped_column(String(45))  # IPv4/IPv6
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    user: Mapped["User | None"] = relationship("User", lazy="raise")

    __table_args__ = (
        CheckConstraint(
            "action IN ('login', 'logout', 'create', 'update', 'delete')",
            name="valid_action",
        ),
    )

    @validates("action")
    def validate_action(self, key: str, value: str) -> str:
        if value not in AUDIT_ACTIONS:
            raise ValueError(
                f"Invalid audit action '{value}'. "
                f"Must be one of: {', '.join(AUDIT_ACTIONS)}"
            )
        return value

    def to_dict(self, *, include_user: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_user:
            data["user"] = (
                {"id": self.user.id, "name": self.user.name, "email": self.user.email}
                if self.user is not None
                else None
            )
        return data


@event.listens_for(AuditLog, "before_update")
def reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} cannot be deleted")

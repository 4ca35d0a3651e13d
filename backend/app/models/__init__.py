from .base import Base
from .user import User
from .role import Role
from .permission import Permission
from .role_permission import RolePermission
from .user_role import UserRole
from .session_token import SessionToken
from .audit_log import AuditLog
from .system_setting import SystemSetting

__all__ = [
    "Base",
    "User",
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "SessionToken",
    "AuditLog",
    "SystemSetting",
]

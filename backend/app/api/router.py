from fastapi import APIRouter

from ..routers import auth, profile
from .admin import audit_logs as admin_audit_logs
from .admin import permissions as admin_permissions
from .admin import roles as admin_roles
from .admin import settings as admin_settings
from .admin import users as admin_users

router = APIRouter(prefix="/api")

_public_routers = [
    auth.router,
    profile.router,
]

_admin_routers = [
    admin_users.router,
    admin_roles.router,
    admin_permissions.router,
    admin_audit_logs.router,
    admin_settings.router,
]

for _router in [*_public_routers, *_admin_routers]:
    router.include_router(_router)

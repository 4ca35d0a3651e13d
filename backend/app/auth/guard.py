"""Route-level permission enforcement.

Every protected route declares exactly one permission name through
``require_permission``. The guard answers 401 when nobody is
authenticated and 403 when the principal lacks the name; handlers only
run after the check passed.
"""
import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user, get_db, get_permission_cache
from ..errors import AuthError, ForbiddenError
from ..models.user import User
from ..services.admin.permission_cache import PermissionCache
from ..services.admin.permission_service import PermissionService

logger = logging.getLogger("rbac_admin.guard")

PermissionCheck = Callable[[int, str], Awaitable[bool]]


async def enforce_permission(
    user: User | None,
    permission: str,
    has_permission: PermissionCheck,
) -> User:
    """Raise unless ``user`` holds ``permission``.

    Raises:
        AuthError: If there is no authenticated user
        ForbiddenError: If the user does not hold the permission
    """
    if user is None:
        raise AuthError()
    if not await has_permission(user.id, permission):
        raise ForbiddenError()
    return user


def require_permission(permission: str) -> Callable:
    """Build a dependency that admits only users holding ``permission``.

    Returns:
        Dependency resolving to the authenticated user
    """

    async def dependency(
        request: Request,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ) -> User:
        permission_service = PermissionService(db, cache)
        try:
            return await enforce_permission(user, permission, permission_service.has_permission)
        except ForbiddenError:
            logger.warning(
                "Permission denied user_id=%s permission=%s method=%s path=%s",
                user.id,
                permission,
                request.method,
                request.url.path,
            )
            raise

    return dependency

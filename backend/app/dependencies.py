from collections.abc import AsyncGenerator
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .crud.session_token import SessionTokenRepository
from .crud.user import UserRepository
from .database import get_session
from .domain.ports.cache import CacheBackend
from .errors import AuthError
from .infrastructure.cache import get_cache_backend as get_process_cache_backend
from .models.session_token import SessionToken
from .models.user import User
from .security.token_inspection import (
    ExpiredTokenError,
    InvalidTokenError,
    session_hash_from_payload,
    validate_access_token,
)
from .services.admin.permission_cache import PermissionCache
from .services.admin.settings_service import SettingsService
from .services.audit.audit_service import AuditContext
from .utils.time import ensure_utc, utcnow

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class SessionUser:
    user: User
    session_token: SessionToken


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_cache_backend() -> CacheBackend:
    return get_process_cache_backend()


def get_permission_cache(
    backend: CacheBackend = Depends(get_cache_backend),
) -> PermissionCache:
    return PermissionCache(backend, ttl_seconds=settings.permission_cache_ttl)


def get_settings_service(
    db: AsyncSession = Depends(get_db),
    backend: CacheBackend = Depends(get_cache_backend),
) -> SettingsService:
    return SettingsService(db, backend, ttl_seconds=settings.settings_cache_ttl)


async def get_current_session_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> SessionUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError()

    try:
        payload = validate_access_token(credentials.credentials)
    except ExpiredTokenError:
        raise AuthError("Token has expired.") from None
    except InvalidTokenError:
        raise AuthError("Invalid token.") from None

    session_token = await SessionTokenRepository(db).get_by_hash(session_hash_from_payload(payload))
    if session_token is None or session_token.user_id != int(payload["sub"]):
        raise AuthError("Session not found.")
    if session_token.revoked:
        raise AuthError("Session revoked.")
    if ensure_utc(session_token.expires_at) <= utcnow():
        raise AuthError("Session has expired.")

    user = await UserRepository(db).get_by_id(session_token.user_id)
    if user is None or not user.is_active:
        raise AuthError()

    return SessionUser(user=user, session_token=session_token)


async def get_current_user(
    current: SessionUser = Depends(get_current_session_user),
) -> User:
    return current.user


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def get_request_context(request: Request) -> AuditContext:
    """Audit context for requests made before anyone is authenticated."""
    return AuditContext(
        user_id=None,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_audit_context(
    request: Request,
    user: User = Depends(get_current_user),
) -> AuditContext:
    return AuditContext(
        user_id=user.id,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

"""Password hashing and access-token helpers."""
import hashlib
import secrets
from datetime import datetime, timedelta

import bcrypt
import jwt

from ..config import settings
from .time import utcnow


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Malformed stored hash
        return False


def new_token_id() -> str:
    return secrets.token_urlsafe(32)


def hash_token_id(token_id: str) -> str:
    return hashlib.sha256(token_id.encode("utf-8")).hexdigest()


def create_access_token(user_id: int, token_id: str, expires_at: datetime) -> str:
    """Encode a JWT bound to one session row through its ``jti``."""
    payload = {
        "sub": str(user_id),
        "jti": token_id,
        "iat": utcnow(),
        "exp": expires_at,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def session_lifetime(minutes: int | None) -> timedelta:
    if minutes is None or minutes <= 0:
        minutes = settings.access_token_expire_minutes
    return timedelta(minutes=minutes)

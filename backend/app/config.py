import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

SUPPORTED_DATABASE_SCHEMES = {"postgresql+asyncpg", "sqlite+aiosqlite"}
SUPPORTED_CACHE_BACKENDS = {"redis", "memory"}


def _parse_bool(name: str, default: bool) -> bool:
    raw_value = os.getenv(name, str(default)).strip().lower()
    if raw_value in {"1", "true", "yes", "on"}:
        return True
    if raw_value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_positive_int(name: str, default: int, *, allow_zero: bool = False) -> int:
    raw_value = os.getenv(name, str(default)).strip()
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 0 or (value == 0 and not allow_zero):
        comparison = "greater than or equal to 0" if allow_zero else "greater than 0"
        raise ValueError(f"{name} must be {comparison}")
    return value


def _parse_allowed_origins(raw_allowed_origins: str) -> list[str]:
    # Support both CSV format and JSON array format
    if raw_allowed_origins.startswith("["):
        try:
            parsed_list = json.loads(raw_allowed_origins)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
        allowed_origins = [
            origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
        ]
    else:
        allowed_origins = [
            origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
        ]

    if not allowed_origins:
        raise ValueError("ALLOWED_ORIGINS must contain at least one origin")

    if "*" in allowed_origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )

    for origin in allowed_origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "ALLOWED_ORIGINS must contain valid http/https origins with host"
            )
    return allowed_origins


class Settings(BaseModel):
    app_name: str = Field(default="RBAC Admin Dashboard")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_backend: str = Field(default="redis")
    permission_cache_ttl: int = Field(default=3600)
    settings_cache_ttl: int = Field(default=3600)
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    access_token_expire_minutes: int = Field(default=120)
    algorithm: str = Field(default="HS256")
    rate_limit_per_minute: int = Field(default=60)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite+aiosqlite")

    @classmethod
    def from_env(cls) -> "Settings":
        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("SECRET_KEY environment variable must be set")

        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw_allowed_origins:
            raise ValueError("ALLOWED_ORIGINS environment variable must be set")
        allowed_origins = _parse_allowed_origins(raw_allowed_origins)

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme not in SUPPORTED_DATABASE_SCHEMES:
            raise ValueError(
                "DATABASE_URL must start with 'postgresql+asyncpg://' or 'sqlite+aiosqlite://'"
            )
        if parsed_db.scheme == "postgresql+asyncpg" and not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        cache_backend = os.getenv("CACHE_BACKEND", cls.model_fields["cache_backend"].default)
        cache_backend = cache_backend.strip().lower()
        if cache_backend not in SUPPORTED_CACHE_BACKENDS:
            raise ValueError("CACHE_BACKEND must be one of: memory, redis")

        redis_url = os.getenv("REDIS_URL", cls.model_fields["redis_url"].default).strip()
        if cache_backend == "redis" and not redis_url:
            raise ValueError("REDIS_URL must be set when CACHE_BACKEND is 'redis'")

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            redis_url=redis_url,
            cache_backend=cache_backend,
            permission_cache_ttl=_parse_positive_int(
                "PERMISSION_CACHE_TTL", cls.model_fields["permission_cache_ttl"].default
            ),
            settings_cache_ttl=_parse_positive_int(
                "SETTINGS_CACHE_TTL", cls.model_fields["settings_cache_ttl"].default
            ),
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            access_token_expire_minutes=_parse_positive_int(
                "ACCESS_TOKEN_EXPIRE_MINUTES",
                cls.model_fields["access_token_expire_minutes"].default,
            ),
            algorithm=os.getenv("ALGORITHM", cls.model_fields["algorithm"].default),
            rate_limit_per_minute=_parse_positive_int(
                "RATE_LIMIT_PER_MINUTE", cls.model_fields["rate_limit_per_minute"].default
            ),
            db_pool_size=_parse_positive_int("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default),
            db_max_overflow=_parse_positive_int(
                "DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default, allow_zero=True
            ),
            db_pool_recycle=_parse_positive_int(
                "DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default
            ),
            db_pool_pre_ping=_parse_bool(
                "DB_POOL_PRE_PING", cls.model_fields["db_pool_pre_ping"].default
            ),
        )


# Settings are validated on first access, not at import time
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first access builds a single
    instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]

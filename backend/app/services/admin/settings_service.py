import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.system_setting import SystemSettingRepository
from ...domain.ports.cache import CacheBackend, CacheError
from ...errors import ValidationError
from ..audit.audit_service import AuditContext, record_audit

logger = logging.getLogger("rbac_admin.settings")

SETTINGS_CACHE_PREFIX = "system_setting_"
SETTINGS_CACHE_ALL_KEY = f"{SETTINGS_CACHE_PREFIX}all"
SETTINGS_CACHE_TTL_SECONDS = 3600
SETTINGS_RESOURCE = "system_settings"

BOOLEAN_TYPES = {"boolean", "bool"}
INTEGER_TYPES = {"integer", "int"}
FLOAT_TYPES = {"float", "double"}
JSON_TYPES = {"json", "array"}
VALID_TYPES = BOOLEAN_TYPES | INTEGER_TYPES | FLOAT_TYPES | JSON_TYPES | {"string"}
TRUTHY_STRINGS = {"1", "true", "on", "yes"}
FALSY_STRINGS = {"0", "false", "off", "no", ""}

# Declared type of every key the dashboard knows about
SETTING_TYPES: dict[str, str] = {
    "company_name": "string",
    "company_address": "string",
    "company_phone": "string",
    "company_email": "string",
    "company_logo": "string",
    "timezone": "string",
    "date_format": "string",
    "currency": "string",
    "currency_symbol_position": "string",
    "items_per_page": "integer",
    "session_timeout": "integer",
    "allow_registration": "boolean",
    "require_email_verification": "boolean",
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "company_name": "",
    "company_address": "",
    "company_phone": "",
    "company_email": "",
    "company_logo": None,
    "timezone": "UTC",
    "date_format": "Y-m-d",
    "currency": "USD",
    "currency_symbol_position": "before",
    "items_per_page": 15,
    "session_timeout": 120,
    "allow_registration": True,
    "require_email_verification": True,
}


def setting_cache_key(key: str) -> str:
    return f"{SETTINGS_CACHE_PREFIX}{key}"


def cast_value(value: str | None, type_: str) -> Any:
    """Turn a stored string into the Python value for its declared type.

    Rows that cannot be read as their type come back as None.
    """
    if value is None:
        return None
    if type_ in BOOLEAN_TYPES:
        return value.strip().lower() in TRUTHY_STRINGS
    if type_ in INTEGER_TYPES:
        if not value.strip():
            return 0
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return int(float(value))
        except (ValueError, OverflowError):
            logger.warning("Unreadable integer setting value=%r", value)
            return None
    if type_ in FLOAT_TYPES:
        if not value.strip():
            return 0.0
        try:
            return float(value)
        except ValueError:
            logger.warning("Unreadable float setting value=%r", value)
            return None
    if type_ in JSON_TYPES:
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def value_to_string(value: Any, type_: str) -> str | None:
    if value is None:
        return None
    if type_ in BOOLEAN_TYPES:
        if isinstance(value, str):
            return "1" if value.strip().lower() in TRUTHY_STRINGS else "0"
        return "1" if value else "0"
    if type_ in JSON_TYPES:
        return json.dumps(value)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_value(value: Any, type_: str) -> str | None:
    """Return why ``value`` cannot be stored as ``type_``, or None if it can."""
    if value is None:
        return None
    if type_ in BOOLEAN_TYPES:
        if isinstance(value, bool) or value in (0, 1):
            return None
        if isinstance(value, str) and value.strip().lower() in TRUTHY_STRINGS | FALSY_STRINGS:
            return None
        return "The value must be true or false."
    if type_ in INTEGER_TYPES:
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return "The value must be an integer."
        if not _is_number(value) or (isinstance(value, float) and not value.is_integer()):
            return "The value must be an integer."
        return None
    if type_ in FLOAT_TYPES:
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return "The value must be a number."
        if not _is_number(value) or value != value or value in (float("inf"), float("-inf")):
            return "The value must be a number."
        return None
    if type_ in JSON_TYPES:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return "The value must be JSON serialisable."
        return None
    if not isinstance(value, (str, int, float)):
        return "The value must be a string."
    return None


class SettingsService:
    """Typed key/value system settings with a read-through cache.

    Per-key entries live under ``system_setting_{key}`` and the full map
    under ``system_setting_all``; any write drops both. Keys that do not
    exist are not cached, so the caller's default is never stored.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache_backend: CacheBackend,
        ttl_seconds: int = SETTINGS_CACHE_TTL_SECONDS,
    ):
        self.session = session
        self.cache_backend = cache_backend
        self.ttl_seconds = ttl_seconds
        self.setting_repo = SystemSettingRepository(session)

    async def _cache_get(self, cache_key: str) -> Any | None:
        try:
            cached = await self.cache_backend.get(cache_key)
        except CacheError:
            logger.warning("Settings cache read failed key=%s", cache_key)
            return None
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed settings cache entry key=%s", cache_key)
            return None

    async def _cache_put(self, cache_key: str, value: Any) -> None:
        try:
            await self.cache_backend.set(cache_key, json.dumps(value), ttl_seconds=self.ttl_seconds)
        except CacheError:
            logger.warning("Settings cache write failed key=%s", cache_key)

    async def _forget(self, *cache_keys: str) -> None:
        for cache_key in cache_keys:
            try:
                await self.cache_backend.delete(cache_key)
            except CacheError:
                logger.error("Settings cache invalidation failed key=%s", cache_key)

    @staticmethod
    def _resolve_type(key: str, type_: str | None) -> str:
        resolved = type_ or SETTING_TYPES.get(key, "string")
        if resolved not in VALID_TYPES:
            raise ValidationError.for_field(key, f"Unsupported setting type '{resolved}'.")
        return resolved

    async def get(self, key: str, default: Any = None) -> Any:
        cache_key = setting_cache_key(key)
        cached = await self._cache_get(cache_key)
        if cached is not None:
            return cached

        setting = await self.setting_repo.get_by_key(key)
        if setting is None:
            return default
        value = cast_value(setting.value, setting.type)
        await self._cache_put(cache_key, value)
        return value

    async def get_all(self) -> dict[str, Any]:
        cached = await self._cache_get(SETTINGS_CACHE_ALL_KEY)
        if cached is not None:
            return cached
        result = {
            setting.key: cast_value(setting.value, setting.type)
            for setting in await self.setting_repo.list_all()
        }
        await self._cache_put(SETTINGS_CACHE_ALL_KEY, result)
        return result

    async def set(
        self,
        key: str,
        value: Any,
        type_: str | None = None,
        *,
        context: AuditContext | None = None,
    ) -> None:
        """Store one setting, drop its cache entries and audit the change."""
        resolved_type = self._resolve_type(key, type_)
        problem = check_value(value, resolved_type)
        if problem:
            raise ValidationError.for_field(key, problem)
        old_value = await self.get(key)

        try:
            await self.setting_repo.upsert(key, value_to_string(value, resolved_type), resolved_type)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self._forget(setting_cache_key(key), SETTINGS_CACHE_ALL_KEY)
        await record_audit(
            self.session,
            lambda audit: audit.log_update(
                SETTINGS_RESOURCE,
                0,
                {"key": key, "value": old_value},
                {"key": key, "value": value},
                context,
            ),
        )

    async def update_multiple(
        self, settings: dict[str, Any], *, context: AuditContext | None = None
    ) -> dict[str, Any]:
        """Store several settings in one transaction and audit them as one update.

        A value may be given bare or as ``{"value": ..., "type": ...}``.
        """
        resolved: list[tuple[str, Any, str]] = []
        for key, data in settings.items():
            if isinstance(data, dict) and "value" in data:
                resolved.append((key, data["value"], self._resolve_type(key, data.get("type"))))
            else:
                resolved.append((key, data, self._resolve_type(key, None)))

        errors = {}
        for key, value, type_ in resolved:
            problem = check_value(value, type_)
            if problem:
                errors[key] = [problem]
        if errors:
            raise ValidationError(details=errors)

        old_settings = await self.get_all()

        try:
            for key, value, type_ in resolved:
                await self.setting_repo.upsert(key, value_to_string(value, type_), type_)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self._forget(*(setting_cache_key(key) for key, _, _ in resolved), SETTINGS_CACHE_ALL_KEY)
        new_settings = await self.get_all()
        await record_audit(
            self.session,
            lambda audit: audit.log_update(SETTINGS_RESOURCE, 0, old_settings, new_settings, context),
        )
        return new_settings

    async def delete_logo(self, *, context: AuditContext | None = None) -> None:
        await self.set("company_logo", None, "string", context=context)

    async def clear_cache(self) -> None:
        keys = [setting_cache_key(setting.key) for setting in await self.setting_repo.list_all()]
        await self._forget(*keys, SETTINGS_CACHE_ALL_KEY)
        logger.info("Settings cache cleared keys=%s", len(keys))

    async def get_company_info(self) -> dict[str, Any]:
        return {
            key: await self.get(key, DEFAULT_SETTINGS[key])
            for key in (
                "company_name",
                "company_address",
                "company_phone",
                "company_email",
                "company_logo",
            )
        }

    async def get_system_preferences(self) -> dict[str, Any]:
        return {
            key: await self.get(key, DEFAULT_SETTINGS[key])
            for key in (
                "date_format",
                "timezone",
                "currency",
                "currency_symbol_position",
                "items_per_page",
                "session_timeout",
                "allow_registration",
                "require_email_verification",
            )
        }

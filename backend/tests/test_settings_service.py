import json
from unittest.mock import AsyncMock

import pytest

from app.domain.ports.cache import CacheError
from app.errors import ValidationError
from app.services.admin.settings_service import (
    SETTINGS_CACHE_ALL_KEY,
    SettingsService,
    cast_value,
    check_value,
    setting_cache_key,
    value_to_string,
)
from app.services.audit.audit_service import AuditContext
from tests.rbac_helpers import audit_entries, make_user


@pytest.mark.parametrize(
    ("raw", "type_", "expected"),
    [
        ("1", "boolean", True),
        ("yes", "bool", True),
        ("0", "boolean", False),
        ("42", "integer", 42),
        ("2.5", "float", 2.5),
        ('{"a": 1}', "json", {"a": 1}),
        ("[1, 2]", "array", [1, 2]),
        ("not json", "json", None),
        ("abc", "integer", None),
        ("plain", "string", "plain"),
        (None, "integer", None),
    ],
)
def test_cast_value(raw, type_, expected) -> None:
    assert cast_value(raw, type_) == expected


def test_value_to_string_normalises_booleans_and_json() -> None:
    assert value_to_string(True, "boolean") == "1"
    assert value_to_string("off", "boolean") == "0"
    assert value_to_string({"a": 1}, "json") == '{"a": 1}'
    assert value_to_string(15, "integer") == "15"
    assert value_to_string(None, "string") is None


@pytest.mark.anyio
async def test_set_then_get_returns_typed_value(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)

    await service.set("items_per_page", 25)
    await service.set("allow_registration", False)

    assert await service.get("items_per_page") == 25
    assert await service.get("allow_registration") is False


@pytest.mark.anyio
async def test_get_caches_value_until_write(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("company_name", "Acme")

    assert await service.get("company_name") == "Acme"
    assert json.loads(await cache_backend.get(setting_cache_key("company_name"))) == "Acme"

    await service.set("company_name", "Globex")

    assert await service.get("company_name") == "Globex"


@pytest.mark.anyio
async def test_missing_key_returns_default_without_caching(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)

    assert await service.get("unknown_key", "fallback") == "fallback"
    assert setting_cache_key("unknown_key") not in cache_backend

    await service.set("unknown_key", "stored")
    assert await service.get("unknown_key", "fallback") == "stored"


@pytest.mark.anyio
async def test_unsupported_type_is_rejected(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)

    with pytest.raises(ValidationError):
        await service.set("company_name", "Acme", "blob")


@pytest.mark.anyio
async def test_update_multiple_writes_once_and_audits(session, cache_backend) -> None:
    actor = await make_user(session, "admin@example.com")
    service = SettingsService(session, cache_backend)
    await service.set("company_name", "Acme")
    await service.get_all()
    assert SETTINGS_CACHE_ALL_KEY in cache_backend

    result = await service.update_multiple(
        {
            "company_name": "Globex",
            "items_per_page": "30",
            "feature_flags": {"value": ["beta"], "type": "json"},
        },
        context=AuditContext(user_id=actor.id),
    )

    assert result["company_name"] == "Globex"
    assert result["items_per_page"] == 30
    assert result["feature_flags"] == ["beta"]
    entry = (await audit_entries(session, resource="system_settings"))[-1]
    assert entry.action == "update"
    assert entry.user_id == actor.id
    assert entry.resource_id == 0
    assert entry.old_values == {"company_name": "Acme"}
    assert entry.new_values["company_name"] == "Globex"


@pytest.mark.anyio
async def test_delete_logo_clears_the_value(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("company_logo", "logos/acme.png")

    await service.delete_logo()

    assert await service.get("company_logo", "default.png") is None
    assert (await service.get_company_info())["company_logo"] is None


@pytest.mark.anyio
async def test_clear_cache_drops_every_entry(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("company_name", "Acme")
    await service.set("timezone", "Europe/Berlin")
    await service.get("company_name")
    await service.get("timezone")
    await service.get_all()

    await service.clear_cache()

    assert setting_cache_key("company_name") not in cache_backend
    assert setting_cache_key("timezone") not in cache_backend
    assert SETTINGS_CACHE_ALL_KEY not in cache_backend


@pytest.mark.anyio
async def test_preferences_fall_back_to_defaults(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("timezone", "Asia/Tokyo")

    preferences = await service.get_system_preferences()

    assert preferences["timezone"] == "Asia/Tokyo"
    assert preferences["items_per_page"] == 15
    assert preferences["allow_registration"] is True


@pytest.mark.anyio
async def test_cache_outage_reads_through_to_database(session) -> None:
    backend = AsyncMock()
    backend.get.side_effect = CacheError("down")
    backend.set.side_effect = CacheError("down")
    backend.delete.side_effect = CacheError("down")
    service = SettingsService(session, backend)

    await service.set("currency", "EUR")

    assert await service.get("currency") == "EUR"


@pytest.mark.parametrize(
    ("value", "type_", "accepted"),
    [
        (25, "integer", True),
        ("30", "integer", True),
        ("abc", "integer", False),
        (2.5, "integer", False),
        (True, "integer", False),
        ("off", "boolean", True),
        ("maybe", "boolean", False),
        ("1.5", "float", True),
        ("fast", "float", False),
        ({"a": [1]}, "json", True),
        ({1, 2}, "json", False),
        ({"nested": 1}, "string", False),
        (None, "integer", True),
    ],
)
def test_check_value(value, type_, accepted) -> None:
    assert (check_value(value, type_) is None) is accepted


@pytest.mark.anyio
async def test_bad_value_is_rejected_before_any_write(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("items_per_page", 20)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_multiple({"company_name": "Acme", "items_per_page": "abc"})

    assert set(exc_info.value.details) == {"items_per_page"}
    with pytest.raises(ValidationError):
        await service.set("allow_registration", "maybe")
    assert await service.get("items_per_page") == 20
    assert await service.get("company_name") is None
    assert await service.get("allow_registration") is None
    assert len(await audit_entries(session, resource="system_settings")) == 1


@pytest.mark.anyio
async def test_malformed_cache_entry_falls_through_to_database(session, cache_backend) -> None:
    service = SettingsService(session, cache_backend)
    await service.set("currency", "EUR")
    await cache_backend.set(setting_cache_key("currency"), "{not json")

    assert await service.get("currency") == "EUR"
    assert json.loads(await cache_backend.get(setting_cache_key("currency"))) == "EUR"

"""
Seed the permission catalog, the system roles, the first admin user and the
default system settings.

Safe to run repeatedly: existing rows are left alone, only the permission
sets of the system roles are re-synced to the catalog.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=... python -m scripts.seed_rbac_core
"""
import asyncio
import os
import secrets
import sys

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.permissions import PERMISSION_CATALOG, SUPER_ADMIN_ROLE, SYSTEM_ROLES
from app.crud.permission import PermissionRepository
from app.crud.role import RoleRepository
from app.crud.system_setting import SystemSettingRepository
from app.crud.user import UserRepository
from app.database import AsyncSessionLocal
from app.services.admin.settings_service import DEFAULT_SETTINGS, SETTING_TYPES, value_to_string
from app.utils.security import hash_password
from app.utils.time import utcnow

DEFAULT_ADMIN_EMAIL = "admin@example.com"
DEFAULT_ADMIN_NAME = "Admin User"


async def seed_rbac_core(
    session: AsyncSession,
    *,
    admin_email: str = DEFAULT_ADMIN_EMAIL,
    admin_password: str | None = None,
) -> str | None:
    """Seed everything in one transaction.

    Returns:
        The generated admin password when one had to be created, else None
    """
    permission_repo = PermissionRepository(session)
    role_repo = RoleRepository(session)
    user_repo = UserRepository(session)
    setting_repo = SystemSettingRepository(session)
    generated_password = None

    try:
        print("Seeding permissions...")
        permission_ids: dict[str, int] = {}
        for name, description, module in PERMISSION_CATALOG:
            permission = await permission_repo.get_by_name(name)
            if permission is None:
                permission = await permission_repo.create(name, module, description)
                print(f"  Created permission: {name}")
            permission_ids[name] = permission.id

        print("Seeding roles...")
        role_ids: dict[str, int] = {}
        for role_name, (description, names) in SYSTEM_ROLES.items():
            role = await role_repo.get_by_name(role_name)
            if role is None:
                role = await role_repo.create(role_name, description, is_system=True)
                print(f"  Created role: {role_name}")
            await role_repo.sync_permissions(role.id, [permission_ids[name] for name in names])
            role_ids[role_name] = role.id

        admin = await user_repo.get_by_email(admin_email, include_deleted=True)
        if admin is None:
            if admin_password is None:
                admin_password = generated_password = secrets.token_urlsafe(12)
            admin = await user_repo.create(
                name=DEFAULT_ADMIN_NAME,
                email=admin_email,
                password_hash=hash_password(admin_password),
                is_active=True,
                email_verified_at=utcnow(),
            )
            print(f"Created admin user: {admin_email}")
        current_role_ids = [role.id for role in await role_repo.get_user_roles(admin.id)]
        if role_ids[SUPER_ADMIN_ROLE] not in current_role_ids:
            await role_repo.sync_user_roles(admin.id, [*current_role_ids, role_ids[SUPER_ADMIN_ROLE]])

        print("Seeding default settings...")
        for key, value in DEFAULT_SETTINGS.items():
            if await setting_repo.get_by_key(key) is not None:
                continue
            type_ = SETTING_TYPES[key]
            await setting_repo.upsert(key, value_to_string(value, type_), type_)

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    return generated_password


async def main() -> None:
    admin_email = os.getenv("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL)
    async with AsyncSessionLocal() as session:
        generated = await seed_rbac_core(
            session,
            admin_email=admin_email,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
        )
    if generated:
        print(f"Generated admin password for {admin_email}: {generated}")
    print("RBAC seeding completed.")


if __name__ == "__main__":
    asyncio.run(main())

"""Fixed permission catalog and the system roles seeded from it.

Permissions are created once by the seed script and never change at
runtime. Route guards reference these constants rather than bare strings.
"""

USERS_VIEW = "users.view"
USERS_CREATE = "users.create"
USERS_EDIT = "users.edit"
USERS_DELETE = "users.delete"
ROLES_VIEW = "roles.view"
ROLES_CREATE = "roles.create"
ROLES_EDIT = "roles.edit"
ROLES_DELETE = "roles.delete"
PERMISSIONS_VIEW = "permissions.view"
AUDIT_LOGS_VIEW = "audit_logs.view"
SETTINGS_VIEW = "settings.view"
SETTINGS_EDIT = "settings.edit"

# (name, description, module)
PERMISSION_CATALOG: tuple[tuple[str, str, str], ...] = (
    (USERS_VIEW, "View users", "users"),
    (USERS_CREATE, "Create users", "users"),
    (USERS_EDIT, "Edit users", "users"),
    (USERS_DELETE, "Delete users", "users"),
    (ROLES_VIEW, "View roles", "roles"),
    (ROLES_CREATE, "Create roles", "roles"),
    (ROLES_EDIT, "Edit roles", "roles"),
    (ROLES_DELETE, "Delete roles", "roles"),
    (PERMISSIONS_VIEW, "View permissions", "permissions"),
    (AUDIT_LOGS_VIEW, "View audit logs", "audit_logs"),
    (SETTINGS_VIEW, "View system settings", "settings"),
    (SETTINGS_EDIT, "Edit system settings", "settings"),
)

ALL_PERMISSIONS: frozenset[str] = frozenset(name for name, _, _ in PERMISSION_CATALOG)

SUPER_ADMIN_ROLE = "Super Admin"

# role name -> (description, permission names)
SYSTEM_ROLES: dict[str, tuple[str, frozenset[str]]] = {
    SUPER_ADMIN_ROLE: ("Full system access", ALL_PERMISSIONS),
    "Manager": (
        "Management access",
        frozenset({USERS_VIEW, USERS_CREATE, USERS_EDIT, ROLES_VIEW, AUDIT_LOGS_VIEW}),
    ),
    "Sales Rep": ("Sales representative access", frozenset({USERS_VIEW})),
    "Accountant": ("Accounting access", frozenset({USERS_VIEW})),
}

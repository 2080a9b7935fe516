"""Core permission catalogue for warden.

Defines the permissions owned by the core module and registers them with a
registry during the boot phase. Each entry declares the prerequisites a
principal must hold alongside it; holding ``user.delete`` without
``user.view`` and ``user.edit`` grants nothing.

Permission string format: "noun.action"
Examples:
  - user.view
  - connection.share
  - permission.manage
  - audit.export
"""

from typing import List, Tuple

from .registry import Permission, PermissionRegistry

CORE_MODULE = "core"


def _core(perm_id: str, description: str, *depends_on: str) -> Permission:
    return Permission(
        id=perm_id,
        module=CORE_MODULE,
        depends_on=tuple(depends_on),
        description=description,
    )


CORE_PERMISSIONS: Tuple[Permission, ...] = (
    # Users
    _core("user.view", "View users"),
    _core("user.create", "Create new users", "user.view"),
    _core("user.edit", "Edit existing users", "user.view"),
    _core("user.delete", "Delete users", "user.view", "user.edit"),

    # Organizations
    _core("org.view", "View organizations"),
    _core("org.create", "Create organizations", "org.view"),
    _core("org.manage", "Manage organizations", "org.view"),

    # Teams
    _core("team.view", "View teams and their members"),
    _core("team.manage", "Manage teams, members and team capabilities", "team.view"),

    # Connections
    _core("connection.view", "View connection protocols and resources"),
    _core("connection.launch", "Launch connections", "connection.view"),
    _core("connection.manage", "Create and update connections", "connection.view"),
    _core("connection.share", "Manage connection sharing and visibility", "connection.manage"),

    # Credential vault
    _core("vault.view", "View credential vault entries"),
    _core("vault.create", "Create credential vault entries", "vault.view"),
    _core("vault.edit", "Edit credential vault entries", "vault.view"),
    _core("vault.delete", "Delete credential vault entries", "vault.view"),
    _core("vault.share", "Share credential vault entries", "vault.view", "vault.edit"),
    _core("vault.use_shared", "Use shared credential vault entries", "vault.view"),
    _core(
        "vault.manage_all",
        "Manage all credential vault entries",
        "vault.view", "vault.edit", "vault.delete",
    ),

    # Permissions
    _core("permission.view", "View permissions"),
    _core("permission.manage", "Assign and revoke permissions", "permission.view"),

    # Audit and security
    _core("audit.view", "View audit logs"),
    _core("audit.export", "Export audit logs", "audit.view"),
    _core("security.audit", "Run security audits", "audit.view"),

    # Notifications
    _core("notification.view", "View in-app notifications"),
    _core("notification.manage", "Manage in-app notifications and broadcasts", "notification.view"),
)


def register_permissions(registry: PermissionRegistry) -> None:
    """Register the core permission catalogue."""
    registry.register_many(CORE_PERMISSIONS)


def get_core_permission_ids() -> List[str]:
    """Get all core permission ids."""
    return [perm.id for perm in CORE_PERMISSIONS]

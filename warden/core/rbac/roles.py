"""Default role definitions for warden.

Defines the standard system roles with their permission sets:
1. Admin - Every core permission
2. Operator - Launch and manage connections, use the vault
3. Auditor - Read-only access with audit log export
4. Viewer - Basic read-only access

Each set lists prerequisites explicitly; the checker never fills them in.
"""

from typing import Dict, List

from .permissions import get_core_permission_ids


# Admin: Full access to the core catalogue
ADMIN_PERMISSIONS = get_core_permission_ids()

# Operator: Works with connections and credentials
OPERATOR_PERMISSIONS = [
    # Connections
    "connection.view",
    "connection.launch",
    "connection.manage",
    "connection.share",

    # Vault
    "vault.view",
    "vault.create",
    "vault.edit",
    "vault.use_shared",

    # Teams - read only
    "team.view",

    # Notifications
    "notification.view",
]

# Auditor: Read-only with audit log export capability
AUDITOR_PERMISSIONS = [
    "user.view",
    "org.view",
    "team.view",
    "connection.view",
    "permission.view",

    # Audit logs - full access including export
    "audit.view",
    "audit.export",
    "security.audit",
]

# Viewer: Minimal read-only access
VIEWER_PERMISSIONS = [
    "connection.view",
    "team.view",
    "notification.view",
]


# Default roles configuration
DEFAULT_ROLES: Dict[str, dict] = {
    "admin": {
        "name": "Admin",
        "description": "Full access to every core permission",
        "permissions": ADMIN_PERMISSIONS,
        "is_system": True,
    },
    "operator": {
        "name": "Operator",
        "description": "Launches, manages and shares connections and credentials",
        "permissions": OPERATOR_PERMISSIONS,
        "is_system": True,
    },
    "auditor": {
        "name": "Auditor",
        "description": "Read-only access with audit log export capabilities",
        "permissions": AUDITOR_PERMISSIONS,
        "is_system": True,
    },
    "viewer": {
        "name": "Viewer",
        "description": "Basic read-only access to connections and teams",
        "permissions": VIEWER_PERMISSIONS,
        "is_system": True,
    },
}


def get_default_role_permissions(role_key: str) -> List[str]:
    """Get permissions list for a default role."""
    role = DEFAULT_ROLES.get(role_key)
    if not role:
        raise ValueError(f"Unknown default role: {role_key}")
    return list(role["permissions"])

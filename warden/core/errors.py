"""Exception hierarchy for the warden permission engine.

Registry errors are fatal at boot. ``UnknownPermission`` is converted to a
deny by the checker. Grant and role errors are policy rejections returned to
the caller for display.
"""

from typing import Iterable, Optional, Sequence


class WardenError(Exception):
    """Base class for all warden errors."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(WardenError):
    """Raised when the permission registry is misconfigured."""


class InvalidPermission(RegistryError):
    """Raised when a permission definition is malformed."""


class DuplicateID(RegistryError):
    """Raised when a permission identifier is registered twice."""

    def __init__(self, permission_id: str):
        super().__init__(f"Permission already registered: {permission_id}")
        self.permission_id = permission_id


class UnknownDependency(RegistryError):
    """Raised when a permission depends on an unregistered permission."""

    def __init__(self, permission_id: str, dependency_id: str):
        super().__init__(
            f"Permission {permission_id} depends on unknown permission {dependency_id}"
        )
        self.permission_id = permission_id
        self.dependency_id = dependency_id


class CyclicDependency(RegistryError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular permission dependency: {' -> '.join(self.cycle)}")


class RegistrationClosed(RegistryError):
    """Raised when registering after the registry has been validated."""

    def __init__(self, permission_id: str):
        super().__init__(
            f"Cannot register {permission_id}: registry is already validated"
        )
        self.permission_id = permission_id


class RegistryNotReady(RegistryError):
    """Raised when the registry is queried before validation completed."""


class UnknownPermission(WardenError):
    """Raised when a permission identifier is not registered."""

    def __init__(self, permission_id: str):
        super().__init__(f"Unknown permission {permission_id!r}")
        self.permission_id = permission_id


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


class GrantError(WardenError):
    """Base class for grant-time rejections."""


class InsufficientScope(GrantError):
    """Raised when an actor tries to grant permissions it does not hold."""

    def __init__(self, permission_ids: Iterable[str]):
        self.permission_ids = sorted(permission_ids)
        super().__init__(
            "You cannot grant a permission you do not hold: "
            + ", ".join(self.permission_ids)
        )


class GrantNotFound(GrantError):
    """Raised when a grant identifier does not resolve to a grant."""

    def __init__(self, grant_id: str):
        super().__init__(f"Grant {grant_id} not found")
        self.grant_id = grant_id


class InvalidGrant(GrantError):
    """Raised when a grant request is malformed."""


class RevokeDenied(GrantError):
    """Raised when an actor lacks the management permission to revoke a grant."""

    def __init__(self, grant_id: str, required_permission: str):
        super().__init__(
            f"Permission denied: revoking {grant_id} requires {required_permission}"
        )
        self.grant_id = grant_id
        self.required_permission = required_permission


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleError(WardenError):
    """Base class for role management errors."""


class RoleNotFound(RoleError):
    """Raised when a role does not exist."""

    def __init__(self, role_id: str):
        super().__init__(f"Role {role_id} not found")
        self.role_id = role_id


class SystemRoleImmutable(RoleError):
    """Raised on destructive operations against system roles."""

    def __init__(self, role_id: str, operation: Optional[str] = None):
        message = "System roles cannot be modified"
        if operation:
            message = f"{message} ({operation})"
        super().__init__(message)
        self.role_id = role_id
        self.operation = operation


class InvalidRole(RoleError):
    """Raised when a role payload is malformed or conflicts with an existing role."""


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


class PrincipalNotFound(WardenError):
    """Raised when a user or team referenced by a grant does not exist."""

    def __init__(self, principal_type: str, principal_id: str):
        super().__init__(f"{principal_type.capitalize()} {principal_id} not found")
        self.principal_type = principal_type
        self.principal_id = principal_id

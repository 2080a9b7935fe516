"""Permission evaluation for warden.

The checker combines raw grants from every :class:`GrantSource` and applies
the dependency closure: a permission is held only if it is granted and every
transitive prerequisite is granted as well. Prerequisites are never added
implicitly, so holding ``user.delete`` alone grants nothing.

The checker holds no mutable state; concurrent checks only read the frozen
registry and the grant stores.
"""

from datetime import datetime
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ...common.clock import utcnow
from ...common.logger import get_logger
from ..errors import UnknownPermission
from .principal import Principal, ResourceRef
from .registry import PermissionRegistry, get_registry
from .sources import GrantSource, default_sources

logger = get_logger("rbac.checker")


class PermissionChecker:
    """Evaluates permissions for principals against the registry and grant sources."""

    def __init__(
        self,
        registry: PermissionRegistry,
        sources: Sequence[GrantSource],
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the checker.

        Args:
            registry: Validated permission registry
            sources: Grant sources to consult on every evaluation
            clock: Returns the evaluation instant as a naive UTC datetime

        Raises:
            RegistryNotReady: If the registry has not passed validation
        """
        registry.ensure_validated()
        self.registry = registry
        self.sources = list(sources)
        self.clock = clock

    @classmethod
    def for_session(
        cls,
        db: Session,
        registry: Optional[PermissionRegistry] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> "PermissionChecker":
        """Build a checker over the default sources backed by ``db``."""
        return cls(registry or get_registry(), default_sources(db), clock=clock)

    # ------------------------------------------------------------------
    # Raw grants
    # ------------------------------------------------------------------

    def raw_permissions(
        self,
        principal: Principal,
        resource: Optional[ResourceRef] = None,
    ) -> FrozenSet[str]:
        """Union of every source's grants, extended with explicit implications."""
        now = self.clock()
        granted = set()
        for source in self.sources:
            granted.update(source.permissions_for(principal, resource, now))
        return self.registry.expand_implied(granted)

    def _is_satisfied(self, permission_id: str, raw: FrozenSet[str]) -> bool:
        if permission_id not in raw:
            return False
        return self.registry.resolve_dependencies(permission_id) <= raw

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def check(
        self,
        principal: Principal,
        permission_id: str,
        resource: Optional[ResourceRef] = None,
    ) -> bool:
        """
        Check whether a principal holds a permission.

        Args:
            principal: Principal being evaluated
            permission_id: Registered permission identifier
            resource: Resource to include resource-scoped grants for

        Returns:
            True if access is granted. Unknown permissions are denied.
        """
        if principal.is_root:
            return True

        permission_id = (permission_id or "").strip()
        try:
            dependencies = self.registry.resolve_dependencies(permission_id)
        except UnknownPermission:
            logger.warning(
                f"Denied {principal}: unknown permission {permission_id!r}"
                + (f" on {resource}" if resource else "")
            )
            return False

        raw = self.raw_permissions(principal, resource)
        if permission_id not in raw:
            logger.debug(f"Denied {principal}: {permission_id} not granted")
            return False

        missing = dependencies - raw
        if missing:
            logger.debug(
                f"Denied {principal}: {permission_id} missing prerequisites "
                f"{sorted(missing)}"
            )
            return False
        return True

    def effective_permissions(
        self,
        principal: Principal,
        resource: Optional[ResourceRef] = None,
    ) -> FrozenSet[str]:
        """
        Permissions whose full prerequisite chain is granted.

        Intended for introspection; checks must still go through :meth:`check`.
        """
        if principal.is_root:
            return self.registry.ids()

        raw = self.raw_permissions(principal, resource)
        effective = set()
        for permission_id in raw:
            if permission_id not in self.registry:
                logger.warning(f"Ignoring unregistered grant {permission_id!r} held by {principal}")
                continue
            if self._is_satisfied(permission_id, raw):
                effective.add(permission_id)
        return frozenset(effective)

    def check_any(
        self,
        principal: Principal,
        permission_ids: Iterable[str],
        resource: Optional[ResourceRef] = None,
    ) -> bool:
        """Check if the principal holds any of the given permissions."""
        return any(self.check(principal, p, resource) for p in permission_ids)

    def check_all(
        self,
        principal: Principal,
        permission_ids: Iterable[str],
        resource: Optional[ResourceRef] = None,
    ) -> bool:
        """Check if the principal holds all of the given permissions."""
        return all(self.check(principal, p, resource) for p in permission_ids)

    def missing_permissions(
        self,
        principal: Principal,
        permission_ids: Iterable[str],
        resource: Optional[ResourceRef] = None,
    ) -> List[str]:
        """Requested permissions the principal does not hold, in sorted order.

        Grants are loaded once for the whole batch. Unknown ids count as missing.
        """
        if principal.is_root:
            return []

        raw = self.raw_permissions(principal, resource)
        return [
            p for p in sorted(set(permission_ids))
            if p not in self.registry or not self._is_satisfied(p, raw)
        ]


def has_permission(
    db: Session,
    principal: Principal,
    permission_id: str,
    resource: Optional[ResourceRef] = None,
) -> bool:
    """
    Check a single permission against the global registry.

    Args:
        db: Database session holding the grant stores
        principal: Principal being evaluated
        permission_id: Permission identifier
        resource: Optional resource scope

    Returns:
        True if the principal holds the permission
    """
    return PermissionChecker.for_session(db).check(principal, permission_id, resource)

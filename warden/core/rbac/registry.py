"""Permission registry for warden.

The registry is the process-wide catalogue of permission identifiers and
their declared prerequisites. Feature modules populate it during the boot
phase; :meth:`PermissionRegistry.validate_dependencies` closes that phase.
After validation the registry is frozen and may be read concurrently without
locking.

Permission identifier format: ``<module-noun>.<action>`` for core permissions
(``user.view``, ``connection.share``) and ``protocol:<driver>.<action>`` for
protocol drivers (``protocol:ssh.port_forward``).
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ...common.logger import get_logger
from ..errors import (
    CyclicDependency,
    DuplicateID,
    InvalidPermission,
    RegistrationClosed,
    RegistryNotReady,
    UnknownDependency,
    UnknownPermission,
)

logger = get_logger("rbac.registry")

SCOPE_GLOBAL = "global"
SCOPE_RESOURCE = "resource"
PROTOCOL_PREFIX = "protocol:"


@dataclass(frozen=True)
class Permission:
    """A registered permission definition."""

    id: str
    module: str
    depends_on: Tuple[str, ...] = ()
    implies: Tuple[str, ...] = ()
    description: str = ""
    display_name: str = ""
    default_scope: str = SCOPE_GLOBAL
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the definition to a dictionary for introspection endpoints."""
        return {
            "id": self.id,
            "module": self.module,
            "depends_on": list(self.depends_on),
            "implies": list(self.implies),
            "description": self.description,
            "display_name": self.display_name or self.id,
            "default_scope": self.default_scope,
            "metadata": dict(self.metadata),
        }


def _normalise_ids(values: Iterable[str], self_id: str, label: str) -> Tuple[str, ...]:
    """Strip, de-duplicate and validate a list of related permission ids."""
    seen = []
    for value in values or ():
        value = (value or "").strip()
        if not value:
            continue
        if value == self_id:
            raise InvalidPermission(f"Permission {self_id} cannot {label} itself")
        if value not in seen:
            seen.append(value)
    return tuple(seen)


class PermissionRegistry:
    """Catalogue of permission definitions with a boot-time validation barrier."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._permissions: Dict[str, Permission] = {}
        self._validated = False
        self._dependency_cache: Dict[str, FrozenSet[str]] = {}

    # ------------------------------------------------------------------
    # Registration phase
    # ------------------------------------------------------------------

    def register(self, permission: Permission) -> Permission:
        """Register a permission definition.

        Args:
            permission: Definition to add

        Returns:
            The normalised definition stored in the registry

        Raises:
            InvalidPermission: If the id is empty or references itself
            DuplicateID: If the id is already registered
            RegistrationClosed: If the registry has already been validated
        """
        if permission is None:
            raise InvalidPermission("Permission definition is required")

        perm_id = (permission.id or "").strip()
        if not perm_id:
            raise InvalidPermission("Permission id is required")

        definition = Permission(
            id=perm_id,
            module=(permission.module or "").strip(),
            depends_on=_normalise_ids(permission.depends_on, perm_id, "depend on"),
            implies=_normalise_ids(permission.implies, perm_id, "imply"),
            description=permission.description,
            display_name=permission.display_name,
            default_scope=permission.default_scope or SCOPE_GLOBAL,
            metadata=dict(permission.metadata or {}),
        )

        with self._lock:
            if self._validated:
                raise RegistrationClosed(perm_id)
            if perm_id in self._permissions:
                raise DuplicateID(perm_id)
            self._permissions[perm_id] = definition

        logger.debug(f"Registered permission {perm_id} (module={definition.module})")
        return definition

    def register_many(self, permissions: Iterable[Permission]) -> None:
        """Register several definitions, stopping at the first error."""
        for permission in permissions:
            self.register(permission)

    def validate_dependencies(self) -> None:
        """Validate the dependency graph and freeze the registry.

        Raises:
            UnknownDependency: If any ``depends_on`` or ``implies`` entry is unregistered
            CyclicDependency: If the dependency graph contains a cycle
        """
        with self._lock:
            for perm_id in sorted(self._permissions):
                perm = self._permissions[perm_id]
                for dep in perm.depends_on + perm.implies:
                    if dep not in self._permissions:
                        raise UnknownDependency(perm_id, dep)

            cycle = self._find_cycle()
            if cycle:
                raise CyclicDependency(cycle)

            self._validated = True
            self._dependency_cache.clear()

        logger.info(f"Permission registry validated with {len(self._permissions)} permissions")

    def _find_cycle(self) -> Optional[List[str]]:
        """Depth-first search with a recursion stack; returns the first cycle found."""
        visited = set()
        on_stack = set()
        stack: List[str] = []

        def visit(perm_id: str) -> Optional[List[str]]:
            visited.add(perm_id)
            on_stack.add(perm_id)
            stack.append(perm_id)
            for dep in self._permissions[perm_id].depends_on:
                if dep in on_stack:
                    return stack[stack.index(dep):] + [dep]
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found
            stack.pop()
            on_stack.discard(perm_id)
            return None

        for perm_id in sorted(self._permissions):
            if perm_id not in visited:
                found = visit(perm_id)
                if found:
                    return found
        return None

    @property
    def is_validated(self) -> bool:
        """Whether the boot-time validation barrier has been passed."""
        return self._validated

    def ensure_validated(self) -> None:
        """Raise if the registry is still in its registration phase."""
        if not self._validated:
            raise RegistryNotReady(
                "Permission registry must be validated before serving checks"
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, permission_id: object) -> bool:
        return permission_id in self._permissions

    def __len__(self) -> int:
        return len(self._permissions)

    def get(self, permission_id: str) -> Optional[Permission]:
        """Get a permission definition by id."""
        return self._permissions.get(permission_id)

    def require(self, permission_id: str) -> Permission:
        """Get a permission definition, raising if it is not registered."""
        perm = self._permissions.get(permission_id)
        if perm is None:
            raise UnknownPermission(permission_id)
        return perm

    def get_all(self) -> Dict[str, Permission]:
        """Snapshot of all registered permissions keyed by id."""
        return dict(self._permissions)

    def get_by_module(self, module: str) -> List[Permission]:
        """Permissions registered under a module, ordered by id."""
        module = (module or "").strip()
        return sorted(
            (p for p in self._permissions.values() if p.module == module),
            key=lambda p: p.id,
        )

    def ids(self) -> FrozenSet[str]:
        """All registered permission ids."""
        return frozenset(self._permissions)

    def modules(self) -> List[str]:
        """Distinct module names in registration order."""
        seen: List[str] = []
        for perm in self._permissions.values():
            if perm.module not in seen:
                seen.append(perm.module)
        return seen

    def resolve_dependencies(self, permission_id: str) -> FrozenSet[str]:
        """Return the transitive prerequisite set of a permission.

        The permission itself is not part of the result.

        Raises:
            UnknownPermission: If the permission (or a prerequisite) is unregistered
            CyclicDependency: If a cycle is reached before validation
        """
        cached = self._dependency_cache.get(permission_id)
        if cached is not None:
            return cached

        self.require(permission_id)
        resolved = set()
        path: List[str] = []

        def walk(perm_id: str) -> None:
            if perm_id in path:
                raise CyclicDependency(path[path.index(perm_id):] + [perm_id])
            path.append(perm_id)
            for dep in self.require(perm_id).depends_on:
                if dep not in resolved:
                    walk(dep)
                    resolved.add(dep)
            path.pop()

        walk(permission_id)
        result = frozenset(resolved)
        if self._validated:
            self._dependency_cache[permission_id] = result
        return result

    def expand_implied(self, permission_ids: Iterable[str]) -> FrozenSet[str]:
        """Extend a set of ids with everything they explicitly imply.

        Unregistered ids are kept as-is so callers can report them.
        """
        expanded = set()
        pending = [p for p in permission_ids if p]
        while pending:
            perm_id = pending.pop()
            if perm_id in expanded:
                continue
            expanded.add(perm_id)
            perm = self._permissions.get(perm_id)
            if perm is not None:
                pending.extend(perm.implies)
        return frozenset(expanded)

    def reset(self) -> None:
        """Clear all registrations (mainly for testing)."""
        with self._lock:
            self._permissions.clear()
            self._dependency_cache.clear()
            self._validated = False


def protocol_permission_id(driver_id: str, action: str) -> str:
    """Build the namespaced identifier of a protocol driver permission."""
    driver_id = (driver_id or "").strip().lower()
    action = (action or "").strip().lower()
    if not driver_id or not action:
        raise InvalidPermission("Protocol permissions require a driver id and an action")
    return f"{PROTOCOL_PREFIX}{driver_id}.{action}"


def register_protocol_permission(
    registry: PermissionRegistry,
    driver_id: str,
    action: str,
    *,
    depends_on: Iterable[str] = (),
    description: str = "",
    display_name: str = "",
    default_scope: str = SCOPE_RESOURCE,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Permission:
    """Register a permission owned by a protocol driver.

    The permission is stored as ``protocol:<driver>.<action>`` under module
    ``protocol:<driver>``.
    """
    perm_id = protocol_permission_id(driver_id, action)
    return registry.register(Permission(
        id=perm_id,
        module=f"{PROTOCOL_PREFIX}{driver_id.strip().lower()}",
        depends_on=tuple(depends_on),
        description=description,
        display_name=display_name,
        default_scope=default_scope,
        metadata=dict(metadata or {}),
    ))


# Global registry instance
_registry = PermissionRegistry()


def get_registry() -> PermissionRegistry:
    """Get the process-wide permission registry.

    Returns:
        Global PermissionRegistry instance
    """
    return _registry

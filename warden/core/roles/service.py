"""Role management service.

Roles are named permission sets held by users directly or through team
membership. System roles are seeded at startup and cannot be deleted,
renamed, or have their permission set replaced.
"""

from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ...common.clock import utcnow
from ...common.logger import get_logger
from ...db.models import Role, Team, User
from ...db.session import transaction
from ..audit import AuditRecorder
from ..config import Settings, get_settings
from ..errors import (
    InsufficientScope,
    InvalidRole,
    PrincipalNotFound,
    RoleNotFound,
    SystemRoleImmutable,
)
from ..rbac.checker import PermissionChecker
from ..rbac.principal import Principal, PrincipalType
from ..rbac.registry import PermissionRegistry
from ..rbac.roles import DEFAULT_ROLES

logger = get_logger("roles")

ROLE_CREATE = "role.create"
ROLE_UPDATE = "role.update"
ROLE_DELETE = "role.delete"
ROLE_PERMISSIONS = "role.permissions"
ROLE_ASSIGN = "role.assign"


class RoleService:
    """Create, edit and assign roles with audit trail."""

    def __init__(
        self,
        db: Session,
        registry: PermissionRegistry,
        *,
        checker: Optional[PermissionChecker] = None,
        clock: Callable = utcnow,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.registry = registry
        self.checker = checker or PermissionChecker.for_session(db, registry, clock=clock)
        self.settings = settings or get_settings()
        self.audit = AuditRecorder(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_role(self, role_id: str) -> Role:
        """Get a role by ID, raising RoleNotFound if it does not exist."""
        role = self.db.get(Role, role_id)
        if role is None:
            raise RoleNotFound(role_id)
        return role

    def get_role_by_name(self, name: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.name == name).first()

    def list_roles(self, include_system: bool = True) -> List[Role]:
        """List roles ordered by name."""
        query = self.db.query(Role)
        if not include_system:
            query = query.filter(Role.is_system == False)
        return query.order_by(Role.name).all()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_role(
        self,
        actor: Principal,
        name: str,
        permission_ids: Iterable[str] = (),
        *,
        description: str = "",
    ) -> Role:
        """
        Create a custom role.

        Args:
            actor: Principal creating the role
            name: Unique role name
            permission_ids: Initial permissions, extended with prerequisites
            description: Optional description

        Raises:
            InvalidRole: If the name is empty or already taken
            UnknownPermission: If a permission is not registered
            InsufficientScope: If the actor cannot manage roles or lacks a permission
        """
        name = (name or "").strip()
        if not name:
            raise InvalidRole("Role name is required")

        self._require_manage(actor)
        permissions = self._expand(permission_ids)
        self._require_held(actor, permissions)

        if self.get_role_by_name(name) is not None:
            raise InvalidRole(f"Role with name {name!r} already exists")

        with transaction(self.db):
            role = Role(
                name=name,
                description=description or "",
                permissions=sorted(permissions),
                is_system=False,
            )
            self.db.add(role)
            self.db.flush()
            self.audit.record(
                ROLE_CREATE,
                actor_id=actor.id,
                permission_ids=permissions,
                details={"role_id": role.id, "name": name},
            )

        logger.info(f"Created role {name} ({role.id}) by {actor}")
        return role

    def update_role(
        self,
        actor: Principal,
        role_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        """Rename a custom role or change its description.

        System roles may only have their description changed.
        """
        self._require_manage(actor)
        role = self.get_role(role_id)
        changes: Dict[str, str] = {}

        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidRole("Role name is required")
            if name != role.name:
                if role.is_system:
                    raise SystemRoleImmutable(role.id, "rename")
                if self.get_role_by_name(name) is not None:
                    raise InvalidRole(f"Role with name {name!r} already exists")
                changes["name"] = name

        if description is not None and description != role.description:
            changes["description"] = description

        if not changes:
            return role

        with transaction(self.db):
            for field_name, value in changes.items():
                setattr(role, field_name, value)
            self.audit.record(
                ROLE_UPDATE,
                actor_id=actor.id,
                details={"role_id": role.id, "changes": changes},
            )

        logger.info(f"Updated role {role.id} by {actor}: {sorted(changes)}")
        return role

    def set_role_permissions(
        self,
        actor: Principal,
        role_id: str,
        permission_ids: Iterable[str],
    ) -> Role:
        """
        Replace the permission set of a custom role.

        The new set is extended with prerequisites. The actor must hold every
        permission it adds.

        Raises:
            SystemRoleImmutable: If the role is a system role
            UnknownPermission: If a permission is not registered
        """
        self._require_manage(actor)
        role = self.get_role(role_id)
        if role.is_system:
            raise SystemRoleImmutable(role.id, "permissions")

        permissions = self._expand(permission_ids)
        added = permissions - set(role.permissions or [])
        self._require_held(actor, added)

        removed = set(role.permissions or []) - permissions
        with transaction(self.db):
            role.permissions = sorted(permissions)
            self.audit.record(
                ROLE_PERMISSIONS,
                actor_id=actor.id,
                permission_ids=permissions,
                details={
                    "role_id": role.id,
                    "added": sorted(added),
                    "removed": sorted(removed),
                },
            )

        logger.info(
            f"Set permissions of role {role.name} by {actor}: "
            f"+{sorted(added)} -{sorted(removed)}"
        )
        return role

    def delete_role(self, actor: Principal, role_id: str) -> None:
        """Delete a custom role; its user and team assignments go with it."""
        self._require_manage(actor)
        role = self.get_role(role_id)
        if role.is_system:
            raise SystemRoleImmutable(role.id, "delete")

        with transaction(self.db):
            self.audit.record(
                ROLE_DELETE,
                actor_id=actor.id,
                permission_ids=role.permissions or [],
                details={"role_id": role.id, "name": role.name},
            )
            self.db.delete(role)

        logger.info(f"Deleted role {role.name} ({role.id}) by {actor}")

    def assign_user_roles(self, actor: Principal, user_id: str, role_ids: Iterable[str]) -> User:
        """Replace the roles held directly by a user."""
        user = self.db.get(User, user_id)
        if user is None:
            raise PrincipalNotFound(PrincipalType.USER.value, user_id)
        self._assign(actor, user, PrincipalType.USER.value, role_ids)
        return user

    def assign_team_roles(self, actor: Principal, team_id: str, role_ids: Iterable[str]) -> Team:
        """Replace the roles held by a team (and through it, its members)."""
        team = self.db.get(Team, team_id)
        if team is None:
            raise PrincipalNotFound(PrincipalType.TEAM.value, team_id)
        self._assign(actor, team, PrincipalType.TEAM.value, role_ids)
        return team

    def _assign(self, actor: Principal, target, principal_type: str, role_ids: Iterable[str]) -> None:
        self._require_manage(actor)
        roles = [self.get_role(role_id) for role_id in dict.fromkeys(role_ids)]

        current = {role.id for role in target.roles}
        granted: Set[str] = set()
        for role in roles:
            if role.id not in current:
                granted.update(role.permissions or [])
        self._require_held(actor, granted)

        with transaction(self.db):
            target.roles = roles
            self.audit.record(
                ROLE_ASSIGN,
                actor_id=actor.id,
                principal_type=principal_type,
                principal_id=target.id,
                permission_ids=granted,
                details={"role_ids": sorted(role.id for role in roles)},
            )

        logger.info(
            f"Assigned roles {sorted(role.name for role in roles)} to "
            f"{principal_type}:{target.id} by {actor}"
        )

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_system_roles(self) -> Dict[str, Role]:
        """
        Create the default system roles.

        Idempotent: roles that already exist are returned unchanged.

        Returns:
            Dict mapping role key to Role object
        """
        seeded: Dict[str, Role] = {}
        with transaction(self.db):
            for role_key, role_config in DEFAULT_ROLES.items():
                existing = self.get_role_by_name(role_config["name"])
                if existing is not None:
                    seeded[role_key] = existing
                    continue

                role = Role(
                    name=role_config["name"],
                    description=role_config["description"],
                    permissions=sorted(self._expand(role_config["permissions"])),
                    is_system=True,
                )
                self.db.add(role)
                seeded[role_key] = role
            self.db.flush()

        logger.info(f"Seeded {len(seeded)} system roles")
        return seeded

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expand(self, permission_ids: Iterable[str]) -> Set[str]:
        expanded: Set[str] = set()
        for permission_id in permission_ids or ():
            permission_id = (permission_id or "").strip()
            if not permission_id:
                continue
            expanded.add(permission_id)
            expanded.update(self.registry.resolve_dependencies(permission_id))
        return expanded

    def _require_manage(self, actor: Principal) -> None:
        required = self.settings.default_management_permission
        if not self.checker.check(actor, required):
            logger.warning(f"Role management denied for {actor}: lacks {required}")
            raise InsufficientScope([required])

    def _require_held(self, actor: Principal, permission_ids: Iterable[str]) -> None:
        missing = self.checker.missing_permissions(actor, permission_ids)
        if missing:
            logger.warning(f"Role change denied for {actor}: lacks {missing}")
            raise InsufficientScope(missing)

"""Grant service for team capabilities and resource shares.

All writes to the team capability and resource grant stores go through this
service. It enforces that an actor can never grant a permission it does not
hold itself, merges repeated shares of the same resource with the same
principal into one grant, and commits every change together with its audit
entry.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...common.clock import to_naive_utc, utcnow
from ...common.logger import get_logger
from ...db.models import ResourceGrant, Team, TeamCapabilityGrant, User
from ...db.models.audit import AuditResult, AuditSeverity
from ...db.session import get_session_factory, transaction
from ..audit import AuditRecorder
from ..config import Settings, get_settings
from ..errors import (
    GrantNotFound,
    InsufficientScope,
    InvalidGrant,
    PrincipalNotFound,
    RevokeDenied,
)
from ..rbac.checker import PermissionChecker
from ..rbac.principal import Principal, PrincipalType, ResourceRef
from ..rbac.registry import PermissionRegistry

logger = get_logger("grants")

# Audit actions
CAPABILITY_GRANT = "capability.grant"
CAPABILITY_REVOKE = "capability.revoke"
RESOURCE_SHARE_ADD = "resource.share.add"
RESOURCE_SHARE_REMOVE = "resource.share.remove"

PairKey = Tuple[str, str, str, str]

# Fixed pool of locks; unrelated pairs may share a stripe
PAIR_LOCK_STRIPES = 64
_pair_locks: Tuple[threading.Lock, ...] = tuple(
    threading.Lock() for _ in range(PAIR_LOCK_STRIPES)
)


def _pair_lock(key: PairKey) -> threading.Lock:
    """Lock serializing in-process writers of one (resource, principal) pair."""
    return _pair_locks[hash(key) % PAIR_LOCK_STRIPES]


def _later_expiry(current: Optional[datetime], requested: Optional[datetime]) -> Optional[datetime]:
    """Pick the later of two expiries; no expiry outlives any timestamp."""
    if current is None or requested is None:
        return None
    return max(current, requested)


class GrantService:
    """
    Mutation layer for team capability grants and resource grants.

    Handles:
    - Granting team capabilities (global, non-expiring)
    - Sharing resources with users or teams (scoped, optionally expiring)
    - Revoking either kind of grant
    - Listing grants for introspection
    """

    def __init__(
        self,
        db: Session,
        registry: PermissionRegistry,
        *,
        checker: Optional[PermissionChecker] = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the grant service.

        Args:
            db: Database session; the service owns commit/rollback on it.
                Denied attempts are audited on a separate session bound to
                the same engine.
            registry: Validated permission registry
            checker: Checker used to evaluate the actor (defaults to one over ``db``)
            clock: Returns the current instant as a naive UTC datetime
            settings: Application settings
        """
        self.db = db
        self.registry = registry
        self.clock = clock
        self.checker = checker or PermissionChecker.for_session(db, registry, clock=clock)
        self.settings = settings or get_settings()
        self.audit = AuditRecorder(db)

    # ------------------------------------------------------------------
    # Team capabilities
    # ------------------------------------------------------------------

    def grant_team_capability(
        self,
        actor: Principal,
        team_id: str,
        permission_id: str,
    ) -> TeamCapabilityGrant:
        """
        Attach an additive capability to a team.

        Returns:
            The new grant, or the existing one if the team already holds it

        Raises:
            UnknownPermission: If the permission is not registered
            PrincipalNotFound: If the team does not exist
            InsufficientScope: If the actor does not hold the permission
        """
        permission_id = (permission_id or "").strip()
        self.registry.require(permission_id)
        self._ensure_principal_exists(PrincipalType.TEAM.value, team_id)

        if not self.checker.check(actor, permission_id):
            self._record_denial(
                CAPABILITY_GRANT, actor,
                principal_type=PrincipalType.TEAM.value,
                principal_id=team_id,
                permission_ids=[permission_id],
            )
            raise InsufficientScope([permission_id])

        existing = self._find_capability(team_id, permission_id)
        if existing is not None:
            return existing

        try:
            with transaction(self.db):
                grant = TeamCapabilityGrant(
                    team_id=team_id,
                    permission_id=permission_id,
                    granted_by=actor.id,
                )
                self.db.add(grant)
                self.db.flush()
                self.audit.record(
                    CAPABILITY_GRANT,
                    actor_id=actor.id,
                    principal_type=PrincipalType.TEAM.value,
                    principal_id=team_id,
                    permission_ids=[permission_id],
                    details={"grant_id": grant.id},
                )
        except IntegrityError:
            # A concurrent writer inserted the same pair first
            existing = self._find_capability(team_id, permission_id)
            if existing is None:
                raise
            return existing

        logger.info(f"Granted capability {permission_id} to team {team_id} by {actor}")
        return grant

    def list_team_capabilities(self, team_id: str) -> List[TeamCapabilityGrant]:
        """Get the capability grants attached to a team."""
        return self.db.query(TeamCapabilityGrant).filter(
            TeamCapabilityGrant.team_id == team_id
        ).order_by(TeamCapabilityGrant.permission_id).all()

    def _find_capability(self, team_id: str, permission_id: str) -> Optional[TeamCapabilityGrant]:
        return self.db.query(TeamCapabilityGrant).filter(
            and_(
                TeamCapabilityGrant.team_id == team_id,
                TeamCapabilityGrant.permission_id == permission_id,
            )
        ).first()

    # ------------------------------------------------------------------
    # Resource grants
    # ------------------------------------------------------------------

    def grant_resource_permission(
        self,
        actor: Principal,
        resource_id: str,
        resource_type: str,
        principal: Principal,
        permission_ids: Iterable[str],
        expires_at: Optional[datetime] = None,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ResourceGrant:
        """
        Share a resource with a user or team.

        Requested scopes are extended with their prerequisites so the grant is
        usable on its own. An active grant for the same (resource, principal)
        pair is merged: scopes are unioned and the later expiry wins.

        The actor must hold the resource type's management permission on the
        resource (see ``management_permission``), the same one ``revoke``
        demands, as well as every requested scope.

        Args:
            actor: Principal performing the share
            resource_id: ID of the shared resource
            resource_type: Type of the shared resource (e.g. 'connection')
            principal: User or team receiving the grant
            permission_ids: Scopes to grant
            expires_at: Optional expiry; must be in the future
            metadata: Opaque metadata stored with the grant

        Returns:
            The single grant record for the pair

        Raises:
            InvalidGrant: If the request is malformed
            UnknownPermission: If a requested scope is not registered
            PrincipalNotFound: If the grantee does not exist
            InsufficientScope: If the actor may not manage shares of the
                resource or does not hold every scope on it
        """
        resource_type = (resource_type or "").strip()
        resource_id = (resource_id or "").strip()
        if not resource_type or not resource_id:
            raise InvalidGrant("resource type and id are required")

        self._ensure_principal_exists(principal.type.value, principal.id)

        scopes = self._expand_scopes(permission_ids)
        if not scopes:
            raise InvalidGrant("at least one permission scope is required")

        expires_at = to_naive_utc(expires_at)
        if expires_at is not None and expires_at <= self.clock():
            raise InvalidGrant("expiration must be in the future")

        resource = ResourceRef(resource_type, resource_id)
        required = self.management_permission(resource_type)
        if not self.checker.check(actor, required, resource):
            self._record_denial(
                RESOURCE_SHARE_ADD, actor,
                principal_type=principal.type.value,
                principal_id=principal.id,
                resource=resource,
                permission_ids=[required],
            )
            raise InsufficientScope([required])

        missing = self.checker.missing_permissions(actor, scopes, resource)
        if missing:
            self._record_denial(
                RESOURCE_SHARE_ADD, actor,
                principal_type=principal.type.value,
                principal_id=principal.id,
                resource=resource,
                permission_ids=missing,
            )
            raise InsufficientScope(missing)

        key = (resource_type, resource_id, principal.type.value, principal.id)
        attempts = max(1, self.settings.grant_merge_retries)
        with _pair_lock(key):
            for attempt in range(1, attempts + 1):
                try:
                    return self._upsert_resource_grant(
                        actor, resource, principal, scopes, expires_at, metadata
                    )
                except IntegrityError:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        f"Concurrent share of {resource} with {principal}; "
                        f"retrying merge ({attempt}/{attempts})"
                    )

    def _upsert_resource_grant(
        self,
        actor: Principal,
        resource: ResourceRef,
        principal: Principal,
        scopes: Set[str],
        expires_at: Optional[datetime],
        metadata: Optional[Dict[str, Any]],
    ) -> ResourceGrant:
        now = self.clock()
        with transaction(self.db):
            grant = self.db.query(ResourceGrant).filter(
                and_(
                    ResourceGrant.resource_type == resource.type,
                    ResourceGrant.resource_id == resource.id,
                    ResourceGrant.principal_type == principal.type.value,
                    ResourceGrant.principal_id == principal.id,
                )
            ).with_for_update().first()

            merged = grant is not None and grant.is_active(now)
            if grant is None:
                grant = ResourceGrant(
                    resource_type=resource.type,
                    resource_id=resource.id,
                    principal_type=principal.type.value,
                    principal_id=principal.id,
                )
                self.db.add(grant)

            if merged:
                grant.permission_ids = sorted(set(grant.permission_ids or []) | scopes)
                grant.expires_at = _later_expiry(grant.expires_at, expires_at)
                combined = dict(grant.extra_data or {})
                combined.update(metadata or {})
                grant.extra_data = combined or None
            else:
                # New pair, or an expired grant that is replaced outright
                grant.permission_ids = sorted(scopes)
                grant.expires_at = expires_at
                grant.extra_data = dict(metadata) if metadata else None
            grant.granted_by = actor.id
            self.db.flush()

            self.audit.record(
                RESOURCE_SHARE_ADD,
                actor_id=actor.id,
                principal_type=principal.type.value,
                principal_id=principal.id,
                resource_type=resource.type,
                resource_id=resource.id,
                permission_ids=scopes,
                details={
                    "grant_id": grant.id,
                    "merged": merged,
                    "expires_at": grant.expires_at.isoformat() if grant.expires_at else None,
                    "metadata": metadata,
                },
            )

        logger.info(
            f"Shared {resource} with {principal} by {actor}: {sorted(scopes)}"
            + (" (merged)" if merged else "")
        )
        return grant

    def list_resource_grants(
        self,
        resource_type: str,
        resource_id: str,
        *,
        include_expired: bool = False,
    ) -> List[ResourceGrant]:
        """Get the grants on a resource, active ones only unless asked otherwise."""
        grants = self.db.query(ResourceGrant).filter(
            and_(
                ResourceGrant.resource_type == resource_type,
                ResourceGrant.resource_id == resource_id,
            )
        ).order_by(ResourceGrant.created_at.asc()).all()

        if include_expired:
            return grants
        now = self.clock()
        return [g for g in grants if g.is_active(now)]

    def purge_expired_grants(self) -> int:
        """Delete expired resource grants.

        Housekeeping only: expired grants are already ignored by the checker.

        Returns:
            Number of grants deleted
        """
        with transaction(self.db):
            count = self.db.query(ResourceGrant).filter(
                ResourceGrant.expires_at <= self.clock()
            ).delete(synchronize_session=False)

        if count:
            logger.info(f"Purged {count} expired resource grants")
        return count

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, actor: Principal, grant_id: str) -> None:
        """
        Revoke a resource grant or a team capability grant.

        Resource grants require the resource type's management permission on
        that resource; team capabilities require the team management permission.

        Raises:
            GrantNotFound: If no grant has this id
            RevokeDenied: If the actor lacks the management permission
        """
        grant = self.db.get(ResourceGrant, grant_id)
        if grant is not None:
            self._revoke_resource_grant(actor, grant)
            return

        capability = self.db.get(TeamCapabilityGrant, grant_id)
        if capability is not None:
            self._revoke_capability(actor, capability)
            return

        raise GrantNotFound(grant_id)

    def _revoke_resource_grant(self, actor: Principal, grant: ResourceGrant) -> None:
        resource = ResourceRef(grant.resource_type, grant.resource_id)
        required = self.management_permission(grant.resource_type)
        if not self.checker.check(actor, required, resource):
            raise RevokeDenied(grant.id, required)

        with transaction(self.db):
            self.audit.record(
                RESOURCE_SHARE_REMOVE,
                actor_id=actor.id,
                principal_type=grant.principal_type,
                principal_id=grant.principal_id,
                resource_type=grant.resource_type,
                resource_id=grant.resource_id,
                permission_ids=grant.permission_ids or [],
                details={"grant_id": grant.id},
            )
            self.db.delete(grant)

        logger.info(f"Revoked share {grant.share_id} on {resource} by {actor}")

    def _revoke_capability(self, actor: Principal, capability: TeamCapabilityGrant) -> None:
        required = self.settings.team_management_permission
        if not self.checker.check(actor, required):
            raise RevokeDenied(capability.id, required)

        with transaction(self.db):
            self.audit.record(
                CAPABILITY_REVOKE,
                actor_id=actor.id,
                principal_type=PrincipalType.TEAM.value,
                principal_id=capability.team_id,
                permission_ids=[capability.permission_id],
                details={"grant_id": capability.id},
            )
            self.db.delete(capability)

        logger.info(
            f"Revoked capability {capability.permission_id} from team "
            f"{capability.team_id} by {actor}"
        )

    def management_permission(self, resource_type: str) -> str:
        """Permission required to manage shares of a resource type."""
        candidate = f"{resource_type}.share"
        if candidate in self.registry:
            return candidate
        return self.settings.default_management_permission

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expand_scopes(self, permission_ids: Iterable[str]) -> Set[str]:
        scopes: Set[str] = set()
        for permission_id in permission_ids or ():
            permission_id = (permission_id or "").strip()
            if not permission_id:
                continue
            scopes.add(permission_id)
            scopes.update(self.registry.resolve_dependencies(permission_id))
        return scopes

    def _ensure_principal_exists(self, principal_type: str, principal_id: str) -> None:
        if principal_type == PrincipalType.USER.value:
            model = User
        elif principal_type == PrincipalType.TEAM.value:
            model = Team
        else:
            raise InvalidGrant("principal type must be user or team")

        if self.db.get(model, principal_id) is None:
            raise PrincipalNotFound(principal_type, principal_id)

    def _record_denial(
        self,
        action: str,
        actor: Principal,
        *,
        principal_type: str,
        principal_id: str,
        permission_ids: Iterable[str],
        resource: Optional[ResourceRef] = None,
    ) -> None:
        logger.warning(f"{action} denied for {actor}: lacks {sorted(permission_ids)}")
        if not self.settings.audit_denied_grants:
            return

        # Own session, so nothing pending on the caller's session is committed
        with get_session_factory(self.db.get_bind())() as session, transaction(session):
            AuditRecorder(session).record(
                action,
                actor_id=actor.id,
                principal_type=principal_type,
                principal_id=principal_id,
                resource_type=resource.type if resource else None,
                resource_id=resource.id if resource else None,
                permission_ids=permission_ids,
                result=AuditResult.DENIED,
                severity=AuditSeverity.CRITICAL,
            )

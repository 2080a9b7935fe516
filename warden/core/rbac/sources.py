"""Grant sources consulted by the permission checker.

Every source answers the same question: which raw permission ids does this
principal hold, optionally scoped to one resource? The checker unions the
answers and applies the dependency closure, so it never needs to know where a
grant came from. New sources (e.g. organization-level grants) plug in by
implementing :class:`GrantSource`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import FrozenSet, Optional, Set

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from warden.db.models import ResourceGrant, Role, TeamCapabilityGrant, team_roles

from .principal import Principal, PrincipalType, ResourceRef


class GrantSource(ABC):
    """A store of raw permission grants."""

    name: str = "source"

    @abstractmethod
    def permissions_for(
        self,
        principal: Principal,
        resource: Optional[ResourceRef],
        now: datetime,
    ) -> Set[str]:
        """Raw permission ids granted to the principal.

        Args:
            principal: Principal being evaluated
            resource: Resource the check is scoped to, if any
            now: Evaluation instant (used for expiry)
        """


class RoleGrantSource(GrantSource):
    """Permissions from roles held directly or through team membership."""

    name = "role"

    def __init__(self, db: Session):
        self.db = db

    def role_ids_for(self, principal: Principal) -> FrozenSet[str]:
        role_ids = set(principal.role_ids)
        teams = principal.grant_teams
        if teams:
            rows = self.db.execute(
                team_roles.select().where(team_roles.c.team_id.in_(sorted(teams)))
            ).all()
            role_ids.update(row.role_id for row in rows)
        return frozenset(role_ids)

    def permissions_for(self, principal, resource, now):
        role_ids = self.role_ids_for(principal)
        if not role_ids:
            return set()

        granted: Set[str] = set()
        for role in self.db.query(Role).filter(Role.id.in_(sorted(role_ids))).all():
            granted.update(role.permissions or [])
        return granted


class TeamCapabilitySource(GrantSource):
    """Additive capability overrides attached to teams."""

    name = "team_capability"

    def __init__(self, db: Session):
        self.db = db

    def permissions_for(self, principal, resource, now):
        teams = principal.grant_teams
        if not teams:
            return set()

        rows = self.db.query(TeamCapabilityGrant.permission_id).filter(
            TeamCapabilityGrant.team_id.in_(sorted(teams))
        ).all()
        return {row.permission_id for row in rows}


class ResourceGrantSource(GrantSource):
    """Time-bounded grants scoped to a single resource."""

    name = "resource"

    def __init__(self, db: Session):
        self.db = db

    def permissions_for(self, principal, resource, now):
        if resource is None:
            return set()

        clauses = []
        if principal.type == PrincipalType.USER:
            clauses.append(and_(
                ResourceGrant.principal_type == PrincipalType.USER.value,
                ResourceGrant.principal_id == principal.id,
            ))
        teams = principal.grant_teams
        if teams:
            clauses.append(and_(
                ResourceGrant.principal_type == PrincipalType.TEAM.value,
                ResourceGrant.principal_id.in_(sorted(teams)),
            ))

        rows = self.db.query(ResourceGrant).filter(
            and_(
                ResourceGrant.resource_type == resource.type,
                ResourceGrant.resource_id == resource.id,
                or_(ResourceGrant.expires_at.is_(None), ResourceGrant.expires_at > now),
                or_(*clauses),
            )
        ).all()

        granted: Set[str] = set()
        for row in rows:
            # Re-check in Python so the boundary holds regardless of backend precision
            if row.is_active(now):
                granted.update(row.permission_ids or [])
        return granted


def default_sources(db: Session) -> list:
    """The role, team capability and resource sources backed by one session."""
    return [RoleGrantSource(db), TeamCapabilitySource(db), ResourceGrantSource(db)]

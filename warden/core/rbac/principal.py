"""Principals and resource references used by the permission checker.

The identity layer resolves who is calling; the checker only consumes the
resulting :class:`Principal`. ``principal_for_user`` and
``principal_for_team`` build one from persisted rows.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from sqlalchemy.orm import Session, selectinload


class PrincipalType(str, Enum):
    """Kinds of principals that can hold grants."""

    USER = "user"
    TEAM = "team"


@dataclass(frozen=True)
class Principal:
    """A resolved user or team."""

    id: str
    type: PrincipalType = PrincipalType.USER
    is_root: bool = False
    role_ids: FrozenSet[str] = frozenset()
    team_ids: FrozenSet[str] = frozenset()

    @classmethod
    def user(
        cls,
        user_id: str,
        *,
        is_root: bool = False,
        role_ids: Iterable[str] = (),
        team_ids: Iterable[str] = (),
    ) -> "Principal":
        return cls(
            id=user_id,
            type=PrincipalType.USER,
            is_root=is_root,
            role_ids=frozenset(role_ids),
            team_ids=frozenset(team_ids),
        )

    @classmethod
    def team(cls, team_id: str, *, role_ids: Iterable[str] = ()) -> "Principal":
        # Teams are never root and have no parent teams
        return cls(id=team_id, type=PrincipalType.TEAM, role_ids=frozenset(role_ids))

    @property
    def is_team(self) -> bool:
        return self.type == PrincipalType.TEAM

    @property
    def grant_teams(self) -> FrozenSet[str]:
        """Teams whose team-level grants apply to this principal."""
        if self.is_team:
            return frozenset([self.id])
        return self.team_ids

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


@dataclass(frozen=True)
class ResourceRef:
    """A concrete resource instance a check or grant is scoped to."""

    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"


def principal_for_user(db: Session, user_id: str) -> Optional[Principal]:
    """Resolve an active user row into a principal.

    Returns:
        Principal, or None if the user does not exist or is inactive
    """
    from warden.db.models import User

    user = (
        db.query(User)
        .options(selectinload(User.roles), selectinload(User.teams))
        .filter(User.id == user_id)
        .first()
    )
    if user is None or not user.is_active:
        return None

    return Principal.user(
        user.id,
        is_root=bool(user.is_root),
        role_ids=[role.id for role in user.roles],
        team_ids=[team.id for team in user.teams],
    )


def principal_for_team(db: Session, team_id: str) -> Optional[Principal]:
    """Resolve a team row into a principal."""
    from warden.db.models import Team

    team = (
        db.query(Team)
        .options(selectinload(Team.roles))
        .filter(Team.id == team_id)
        .first()
    )
    if team is None:
        return None
    return Principal.team(team.id, role_ids=[role.id for role in team.roles])

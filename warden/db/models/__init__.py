"""Database models for warden."""

from warden.db.models.role import Role, user_roles, team_roles
from warden.db.models.team import Team, team_members
from warden.db.models.user import User
from warden.db.models.grant import TeamCapabilityGrant, ResourceGrant
from warden.db.models.audit import AuditLog, AuditResult, AuditSeverity

__all__ = [
    "Role",
    "Team",
    "User",
    "TeamCapabilityGrant",
    "ResourceGrant",
    "AuditLog",
    "AuditResult",
    "AuditSeverity",
    "user_roles",
    "team_roles",
    "team_members",
]

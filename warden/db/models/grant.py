"""Grant stores for warden.

Team capability grants are additive, non-expiring and global. Resource grants
are scoped to one resource and hold the merged scopes of a single
``(resource, principal)`` pair; an expired resource grant is treated as
absent but is not deleted eagerly.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from warden.db.base import Base


class TeamCapabilityGrant(Base):
    __tablename__ = "team_capability_grants"
    __table_args__ = (
        UniqueConstraint("team_id", "permission_id", name="uq_team_capability"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(String(255), nullable=False)
    granted_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    team = relationship("Team", back_populates="capabilities")

    def __repr__(self) -> str:
        return f"<TeamCapabilityGrant {self.permission_id} for team {self.team_id}>"


class ResourceGrant(Base):
    __tablename__ = "resource_grants"
    __table_args__ = (
        UniqueConstraint(
            "resource_type", "resource_id", "principal_type", "principal_id",
            name="uq_resource_grant_principal",
        ),
        Index("ix_resource_grants_resource", "resource_type", "resource_id"),
        Index("ix_resource_grants_principal", "principal_type", "principal_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resource_type = Column(String(100), nullable=False)
    resource_id = Column(String(255), nullable=False)
    principal_type = Column(String(20), nullable=False)  # user | team
    principal_id = Column(String(36), nullable=False)
    permission_ids = Column(JSON, nullable=False, default=list)
    expires_at = Column(DateTime, nullable=True)  # NULL = never expires
    granted_by = Column(String(36), nullable=True)
    extra_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<ResourceGrant {self.resource_type}:{self.resource_id} "
            f"to {self.principal_type}:{self.principal_id}>"
        )

    def is_active(self, now: datetime) -> bool:
        """An expiry equal to ``now`` counts as expired."""
        return self.expires_at is None or self.expires_at > now

    @property
    def share_id(self) -> str:
        return f"{self.principal_type}:{self.principal_id}"

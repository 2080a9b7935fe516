"""Audit log model for warden.

Every grant or role mutation writes one entry in the same transaction as the
change itself, so a permission change never exists without its audit trail.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Iterable
from sqlalchemy import Column, String, DateTime, JSON

from warden.db.base import Base


class AuditSeverity(str, Enum):
    """Severity levels for audit log entries."""
    INFO = "info"         # Standard operations
    WARNING = "warning"   # Potentially concerning actions
    CRITICAL = "critical" # Security-relevant events (denied grants)


class AuditResult(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Actor information
    actor_id = Column(String(36), nullable=True, index=True)

    # Action details
    action = Column(String(100), nullable=False, index=True)
    principal_type = Column(String(20), nullable=True)
    principal_id = Column(String(36), nullable=True, index=True)
    resource_type = Column(String(100), nullable=True, index=True)
    resource_id = Column(String(255), nullable=True, index=True)
    permission_ids = Column(JSON, nullable=False, default=list)
    result = Column(String(20), nullable=False, default=AuditResult.SUCCESS.value)
    details = Column(JSON, nullable=True)

    # Metadata
    severity = Column(String(20), nullable=False, default="info", index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} ({self.result}) by {self.actor_id}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        *,
        actor_id: Optional[str] = None,
        principal_type: Optional[str] = None,
        principal_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        permission_ids: Iterable[str] = (),
        result: AuditResult = AuditResult.SUCCESS,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            action: Action performed (e.g. 'capability.grant', 'resource.share.add')
            actor_id: ID of the principal performing the action (None for system actions)
            principal_type: Type of the principal affected by the change
            principal_id: ID of the principal affected by the change
            resource_type: Type of the resource the grant is scoped to
            resource_id: ID of the resource the grant is scoped to
            permission_ids: Permissions granted or revoked
            result: Outcome of the action
            details: Additional context
            severity: Log severity level
        """
        return cls(
            action=action,
            actor_id=actor_id,
            principal_type=principal_type,
            principal_id=principal_id,
            resource_type=resource_type,
            resource_id=resource_id,
            permission_ids=sorted(set(permission_ids)),
            result=result.value if isinstance(result, AuditResult) else result,
            details=details,
            severity=severity.value if isinstance(severity, AuditSeverity) else severity,
        )

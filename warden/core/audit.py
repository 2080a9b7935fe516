"""Audit event emission for grant and role mutations.

The recorder adds entries to the caller's session without committing; the
service that owns the transaction commits the change and its audit entry
together.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..common.logger import get_logger
from ..db.models.audit import AuditLog, AuditResult, AuditSeverity

logger = get_logger("audit")

# Sensitive fields to redact from grant metadata
SENSITIVE_FIELDS = {
    "password",
    "token",
    "access_token",
    "refresh_token",
    "api_key",
    "secret",
    "client_secret",
    "private_key",
}


def redact_sensitive(data: Any) -> Any:
    """Redact sensitive fields from data."""
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in SENSITIVE_FIELDS else redact_sensitive(v)
            for k, v in data.items()
        }
    elif isinstance(data, list):
        return [redact_sensitive(item) for item in data]
    return data


class AuditRecorder:
    """
    Writes structured audit events into the current transaction.

    Usage:
        with service.transaction():
            db.add(grant)
            AuditRecorder(db).record(
                "capability.grant",
                actor_id=actor.id,
                principal_type="team",
                principal_id=team_id,
                permission_ids=[permission_id],
            )
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
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
    ) -> AuditLog:
        """Add an audit entry to the session and flush it."""
        entry = AuditLog.create_entry(
            action,
            actor_id=actor_id,
            principal_type=principal_type,
            principal_id=principal_id,
            resource_type=resource_type,
            resource_id=resource_id,
            permission_ids=permission_ids,
            result=result,
            details=redact_sensitive(details) if details else None,
            severity=severity,
        )
        self.db.add(entry)
        self.db.flush()

        logger.info(
            f"{action} {entry.result} actor={actor_id} "
            f"principal={principal_type}:{principal_id} "
            f"resource={resource_type}:{resource_id} permissions={entry.permission_ids}"
        )
        return entry

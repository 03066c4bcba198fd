"""Tenant audit logging with sensitive-data redaction.

Records administrative and dispatch actions (batch version activation,
run dispatch, confirmation decisions) in the audit_logs table. Context
dicts are redacted before storage so credentials and contact details
never land in the audit trail.

Usage:
    from src.services.audit_service import AuditService

    audit = AuditService(db)
    audit.log(tenant_id, actor=user_id, action="run.dispatched",
              target=run.id, meta={"batch": batch.name})
"""

import json
from typing import Any

from sqlalchemy.orm import Session

from src.db.models import AuditLog

__all__ = [
    "AuditService",
    "redact_sensitive",
    "REDACT_FIELDS",
    "REDACTED",
]


# Redaction configuration

REDACT_FIELDS = {
    # Credentials
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "private_key",
    "access_key",
    "client_secret",
    # Contact details
    "email",
    "phone",
}

REDACTED = "[REDACTED]"


def redact_sensitive(
    data: dict | list | str | None, _depth: int = 0
) -> dict | list | str | None:
    """Recursively redact sensitive fields from data structures.

    Scans dictionaries for keys containing a known sensitive field name
    and replaces their values with '[REDACTED]'. Handles nested structures.

    Args:
        data: The data structure to redact (dict, list, str, or None)
        _depth: Internal recursion depth counter (prevents infinite loops)

    Returns:
        A copy of the data with sensitive fields redacted.

    Example:
        >>> redact_sensitive({'WP_ADMIN_EMAIL': 'a@b.io', 'DOMAIN': 'b.io'})
        {'WP_ADMIN_EMAIL': '[REDACTED]', 'DOMAIN': 'b.io'}
    """
    if _depth > 10:  # Prevent infinite recursion
        return REDACTED
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, list):
        return [redact_sensitive(item, _depth + 1) for item in data]
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if any(field in key_lower for field in REDACT_FIELDS):
                result[key] = REDACTED
            else:
                result[key] = redact_sensitive(value, _depth + 1)
        return result
    return data


class AuditService:
    """Service for tenant-scoped audit logging with sensitive data redaction.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        """Initialize the audit service.

        Args:
            db: SQLAlchemy session for database operations.
        """
        self.db = db

    def log(
        self,
        customer_id: str,
        actor: str,
        action: str,
        target: str | None = None,
        meta: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> AuditLog:
        """Create an audit log entry.

        Args:
            customer_id: Tenant the action belongs to.
            actor: User id or component name that acted.
            action: Dotted action name (e.g. "batch.version_activated").
            target: Identifier of the affected object.
            meta: Optional structured context (redacted and JSON-encoded).
            commit: Commit immediately. Pass False to write inside a
                caller-managed transaction.

        Returns:
            The created AuditLog entry.
        """
        meta_json: str | None = None
        if meta is not None:
            meta_json = json.dumps(redact_sensitive(meta), default=str)

        entry = AuditLog(
            customer_id=customer_id,
            actor=actor,
            action=action,
            target=target,
            meta_json=meta_json,
        )
        self.db.add(entry)
        if commit:
            self.db.commit()
            self.db.refresh(entry)
        return entry

    def get_logs(
        self,
        customer_id: str,
        action: str | None = None,
        limit: int = 1000,
    ) -> list[AuditLog]:
        """Get audit logs for a tenant, oldest first.

        Args:
            customer_id: Tenant to query.
            action: Optional filter by action name.
            limit: Maximum number of logs to return (default 1000).
        """
        query = self.db.query(AuditLog).filter(AuditLog.customer_id == customer_id)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        return query.order_by(AuditLog.created_at.asc()).limit(limit).all()

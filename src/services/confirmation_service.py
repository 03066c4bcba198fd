"""Approval requests for commands matched by confirm-mode policies.

A confirmation is created pending with an expiry. approve() and deny()
only succeed while it is still pending and unexpired; the status change
is a single guarded UPDATE, so two approvers racing cannot both win.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from src.db.models import CommandConfirmation, ConfirmationStatus
from src.errors import ConfirmationStateError, NotFoundError
from src.services.audit_service import AuditService

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Denied by approver"


def _iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat()


class ConfirmationService:
    """Creates and decides CommandConfirmation rows.

    Attributes:
        db: SQLAlchemy session for database operations.
        ttl_hours: Lifetime of a new confirmation.
    """

    def __init__(self, db: Session, ttl_hours: float = 24.0) -> None:
        self.db = db
        self.ttl_hours = ttl_hours
        self.audit = AuditService(db)

    def create(
        self,
        tenant_id: str,
        agent_id: str,
        command_text: str,
        params: dict[str, Any] | None = None,
        conversation_id: str | None = None,
        policy_id: str | None = None,
        batch_id: str | None = None,
        intent: str | None = None,
        requested_by: str | None = None,
        now: datetime | None = None,
    ) -> CommandConfirmation:
        """Open a pending confirmation that expires after ttl_hours."""
        now = now or datetime.now(UTC)
        confirmation = CommandConfirmation(
            customer_id=tenant_id,
            conversation_id=conversation_id,
            agent_id=agent_id,
            policy_id=policy_id,
            batch_id=batch_id,
            intent=intent,
            command_text=command_text,
            requested_by=requested_by,
            status=ConfirmationStatus.pending.value,
            expires_at=_iso(now + timedelta(hours=self.ttl_hours)),
        )
        confirmation.params = params or {}
        self.db.add(confirmation)
        self.db.commit()
        self.db.refresh(confirmation)
        logger.info(
            "Confirmation %s requested for intent %s (expires %s)",
            confirmation.id,
            intent,
            confirmation.expires_at,
        )
        return confirmation

    def get(self, confirmation_id: str) -> CommandConfirmation:
        confirmation = self.db.get(CommandConfirmation, confirmation_id)
        if confirmation is None:
            raise NotFoundError("Confirmation", confirmation_id)
        return confirmation

    def _decide(
        self,
        confirmation_id: str,
        status: ConfirmationStatus,
        user_id: str,
        reason: str | None,
        now: datetime | None,
    ) -> CommandConfirmation:
        now_iso = _iso(now or datetime.now(UTC))
        values: dict[str, Any] = {
            "status": status.value,
            "decided_by": user_id,
            "decided_at": now_iso,
        }
        if status == ConfirmationStatus.rejected:
            values["rejection_reason"] = reason or DEFAULT_REJECTION_REASON

        result = self.db.execute(
            update(CommandConfirmation)
            .where(
                CommandConfirmation.id == confirmation_id,
                CommandConfirmation.status == ConfirmationStatus.pending.value,
                CommandConfirmation.expires_at > now_iso,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            confirmation = self.get(confirmation_id)
            if confirmation.status == ConfirmationStatus.pending.value:
                confirmation.status = ConfirmationStatus.expired.value
                self.db.commit()
            raise ConfirmationStateError(confirmation_id, confirmation.status)

        confirmation = self.get(confirmation_id)
        self.audit.log(
            confirmation.customer_id,
            actor=user_id,
            action=f"confirmation.{status.value}",
            target=confirmation_id,
            meta={"intent": confirmation.intent, "reason": values.get("rejection_reason")},
            commit=False,
        )
        self.db.commit()
        self.db.refresh(confirmation)
        logger.info("Confirmation %s %s by %s", confirmation_id, status.value, user_id)
        return confirmation

    def approve(
        self, confirmation_id: str, user_id: str, now: datetime | None = None
    ) -> CommandConfirmation:
        """Approve a pending confirmation.

        Raises:
            NotFoundError: If it does not exist.
            ConfirmationStateError: If it is decided or expired (an
                overdue pending row is marked expired first).
        """
        return self._decide(confirmation_id, ConfirmationStatus.approved, user_id, None, now)

    def deny(
        self,
        confirmation_id: str,
        user_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> CommandConfirmation:
        """Reject a pending confirmation.

        Raises:
            NotFoundError: If it does not exist.
            ConfirmationStateError: If it is decided or expired.
        """
        return self._decide(confirmation_id, ConfirmationStatus.rejected, user_id, reason, now)

    def expire_pending(self, now: datetime | None = None) -> int:
        """Mark every overdue pending confirmation expired.

        Returns:
            Number of confirmations expired.
        """
        now_iso = _iso(now or datetime.now(UTC))
        result = self.db.execute(
            update(CommandConfirmation)
            .where(
                CommandConfirmation.status == ConfirmationStatus.pending.value,
                CommandConfirmation.expires_at <= now_iso,
            )
            .values(status=ConfirmationStatus.expired.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Expired %d pending confirmations", result.rowcount)
        return result.rowcount

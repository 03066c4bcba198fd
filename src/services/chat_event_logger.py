"""Append-only ChatEvent writer.

Every router stage records its decision here. Logging is best-effort: a
failed insert is rolled back, counted and reported as a warning, and the
request carries on. Events are committed as they are written, so any
pending changes on the same session are committed with them; the router
only logs at points where its own writes are complete.

Usage:
    events = ChatEventLogger(db)
    events.log(conversation_id, agent_id, ChatEventType.intent_classified,
               {"intent": "check_cpu", "text": text[:100]})
"""

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import ChatEvent, ChatEventType
from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)


class ChatEventLogger:
    """Best-effort writer for the conversation audit trail.

    Attributes:
        db: SQLAlchemy session for database operations.
        failures: Number of events that could not be persisted.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.failures = 0

    def log(
        self,
        conversation_id: str,
        agent_id: str | None,
        event_type: ChatEventType | str,
        payload: dict[str, Any] | None = None,
        ref_id: str | None = None,
    ) -> ChatEvent | None:
        """Insert one ChatEvent and commit.

        Args:
            conversation_id: Conversation the event belongs to.
            agent_id: Agent the event concerns.
            event_type: ChatEventType (or its string value).
            payload: Structured context. Secret-looking keys are redacted.
            ref_id: Optional reference such as a run or confirmation id.

        Returns:
            The persisted event, or None if the write failed.
        """
        type_value = (
            event_type.value if isinstance(event_type, ChatEventType) else event_type
        )
        safe_payload = redact_for_logging(payload or {})
        event = ChatEvent(
            conversation_id=conversation_id,
            agent_id=agent_id,
            type=type_value,
            payload_json=json.dumps(safe_payload, default=str),
            ref_id=ref_id,
        )
        try:
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.failures += 1
            logger.warning(
                "Failed to log chat event %s for conversation %s: %s",
                type_value,
                conversation_id,
                e,
            )
            return None
        return event

    def list_events(
        self, conversation_id: str, event_type: ChatEventType | str | None = None
    ) -> list[ChatEvent]:
        """Return a conversation's events in insertion order."""
        stmt = select(ChatEvent).where(ChatEvent.conversation_id == conversation_id)
        if event_type is not None:
            type_value = (
                event_type.value
                if isinstance(event_type, ChatEventType)
                else event_type
            )
            stmt = stmt.where(ChatEvent.type == type_value)
        stmt = stmt.order_by(ChatEvent.created_at, ChatEvent.id)
        return list(self.db.scalars(stmt))

"""Delivers dispatch outbox messages to the agent-dispatch channel.

Each pending message is published, marked delivered and followed by a
task_started ChatEvent. A message that fails delivery stays pending with
its attempt count and last error. After max_attempts it is marked failed
and a dispatch_failed event is recorded.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import ChatEventType, DispatchMessage, OutboxStatus, utc_now_iso
from src.errors import RouterError
from src.services.chat_event_logger import ChatEventLogger
from src.services.dispatch_publisher import DispatchDeliveryError, DispatchPublisher
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


@dataclass
class RelayStats:
    delivered: int = 0
    retried: int = 0
    failed: int = 0


class OutboxRelay:
    """Drains pending DispatchMessage rows through a publisher."""

    def __init__(
        self,
        db: Session,
        publisher: DispatchPublisher,
        events: ChatEventLogger | None = None,
        max_attempts: int = 5,
    ) -> None:
        self.db = db
        self.publisher = publisher
        self.events = events or ChatEventLogger(db)
        self.max_attempts = max_attempts

    def pending(self, limit: int = 50) -> list[DispatchMessage]:
        stmt = (
            select(DispatchMessage)
            .where(DispatchMessage.status == OutboxStatus.pending.value)
            .order_by(DispatchMessage.created_at, DispatchMessage.id)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    def drain(self, limit: int = 50) -> RelayStats:
        """Publish up to ``limit`` pending messages, oldest first.

        Returns:
            Counts of delivered, retried (still pending) and failed messages.
        """
        stats = RelayStats()
        messages = self.pending(limit)
        self.db.commit()

        for message in messages:
            payload = message.payload
            try:
                self.publisher.publish(message.topic, payload)
            except DispatchDeliveryError as e:
                message.attempts += 1
                message.last_error = sanitize_error_message(
                    str(RouterError.from_code("E-3001", run_id=message.run_id, error=str(e)))
                )
                if message.attempts >= self.max_attempts:
                    message.status = OutboxStatus.failed.value
                    stats.failed += 1
                else:
                    stats.retried += 1
                self.db.commit()
                logger.warning(
                    "Delivery of run %s failed (attempt %d): %s",
                    message.run_id,
                    message.attempts,
                    e,
                )
                if message.status == OutboxStatus.failed.value:
                    self._log_event(payload, ChatEventType.dispatch_failed, message.last_error)
                continue

            message.attempts += 1
            message.status = OutboxStatus.delivered.value
            message.delivered_at = utc_now_iso()
            message.last_error = None
            self.db.commit()
            stats.delivered += 1
            self._log_event(payload, ChatEventType.task_started)

        if messages:
            logger.info(
                "Outbox relay: %d delivered, %d retried, %d failed",
                stats.delivered,
                stats.retried,
                stats.failed,
            )
        return stats

    def _log_event(
        self, payload: dict, event_type: ChatEventType, error: str | None = None
    ) -> None:
        conversation_id = payload.get("conversation_id")
        if not conversation_id:
            return
        body = {"run_id": payload.get("run_id"), "batch_id": payload.get("batch_id")}
        if error:
            body["error"] = error
        self.events.log(
            conversation_id,
            payload.get("agent_id"),
            event_type,
            body,
            ref_id=payload.get("run_id"),
        )

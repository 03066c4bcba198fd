"""Service layer for the chat router.

Provides the router pipeline, its stage services, batch catalog
administration, confirmations, dispatch and audit logging.
"""

from src.services.audit_service import AuditService, redact_sensitive
from src.services.batch_service import BatchService
from src.services.chat_event_logger import ChatEventLogger
from src.services.chat_router import ChatRouter, RouterResult
from src.services.confirmation_service import ConfirmationService
from src.services.outbox_relay import OutboxRelay
from src.services.run_dispatcher import RunDispatcher

__all__ = [
    "ChatRouter",
    "RouterResult",
    "ChatEventLogger",
    "RunDispatcher",
    "OutboxRelay",
    "ConfirmationService",
    "BatchService",
    "AuditService",
    "redact_sensitive",
]

"""Database module for chat router state management and persistence."""

from src.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from src.db.models import (
    Agent,
    AuditLog,
    BatchRun,
    ChatConversation,
    ChatEvent,
    ChatEventType,
    CommandConfirmation,
    CommandPolicy,
    ConfirmationStatus,
    DispatchMessage,
    MatchType,
    PolicyMode,
    RunStatus,
    ScriptBatch,
    ScriptBatchVersion,
    VersionStatus,
)

__all__ = [
    # Models
    "Agent",
    "AuditLog",
    "BatchRun",
    "ChatConversation",
    "ChatEvent",
    "CommandConfirmation",
    "CommandPolicy",
    "DispatchMessage",
    "ScriptBatch",
    "ScriptBatchVersion",
    # Enums
    "ChatEventType",
    "ConfirmationStatus",
    "MatchType",
    "PolicyMode",
    "RunStatus",
    "VersionStatus",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]

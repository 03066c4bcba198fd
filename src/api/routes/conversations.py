"""FastAPI routes for router conversations.

Endpoints:
    GET    /conversations/{id}/events  Ordered decision trail
    DELETE /conversations/{id}         Close the conversation
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from src.api.schemas import ChatEventListResponse, ChatEventResponse
from src.db.connection import get_db
from src.errors import NotFoundError
from src.services.chat_event_logger import ChatEventLogger
from src.services.conversation_state import ConversationStateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def get_state_store(db: Session = Depends(get_db)) -> ConversationStateStore:
    """Dependency to get ConversationStateStore instance."""
    return ConversationStateStore(db)


def get_event_logger(db: Session = Depends(get_db)) -> ChatEventLogger:
    """Dependency to get ChatEventLogger instance."""
    return ChatEventLogger(db)


@router.get("/{conversation_id}/events", response_model=ChatEventListResponse)
def list_conversation_events(
    conversation_id: str,
    event_type: str | None = Query(default=None, alias="type"),
    states: ConversationStateStore = Depends(get_state_store),
    events: ChatEventLogger = Depends(get_event_logger),
) -> ChatEventListResponse:
    """List a conversation's events in the order they were recorded.

    Args:
        conversation_id: The conversation.
        event_type: Optional filter on event type (e.g. "task_queued").
        states: Conversation store dependency.
        events: Event logger dependency.

    Raises:
        NotFoundError: If the conversation does not exist (404).
    """
    if states.get(conversation_id) is None:
        raise NotFoundError("Conversation", conversation_id)
    rows = events.list_events(conversation_id, event_type)
    return ChatEventListResponse(
        conversation_id=conversation_id,
        events=[ChatEventResponse.model_validate(row) for row in rows],
        total=len(rows),
    )


@router.delete("/{conversation_id}", status_code=204)
def close_conversation(
    conversation_id: str,
    states: ConversationStateStore = Depends(get_state_store),
) -> None:
    """Close a conversation; later messages on it are answered "done".

    Raises:
        NotFoundError: If the conversation does not exist (404).
    """
    conversation = states.get(conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    states.close(conversation)
    logger.info("Closed conversation %s", conversation_id)

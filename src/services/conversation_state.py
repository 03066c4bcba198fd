"""Typed per-conversation router state.

A conversation is always in exactly one of three states, stored as JSON
under ``meta["state"]`` of its chat_conversations row:

- IdleState: nothing pending.
- AwaitingInputsState: a batch was resolved but required inputs are
  missing; ``partial`` holds what has been collected so far.
- AwaitingConfirmationState: inputs are complete and a confirm-mode
  policy is waiting on an approval decision.
"""

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from src.db.models import ChatConversation, ConversationStatus, utc_now_iso
from src.errors import RouterError

logger = logging.getLogger(__name__)


class IdleState(BaseModel):
    kind: Literal["idle"] = "idle"
    last_intent: str | None = None


class AwaitingInputsState(BaseModel):
    kind: Literal["awaiting_inputs"] = "awaiting_inputs"
    intent: str
    batch_id: str
    partial: dict[str, Any] = Field(default_factory=dict)


class AwaitingConfirmationState(BaseModel):
    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    intent: str
    batch_id: str
    confirmation_id: str
    inputs: dict[str, Any] = Field(default_factory=dict)


ConversationState = Annotated[
    Union[IdleState, AwaitingInputsState, AwaitingConfirmationState],
    Field(discriminator="kind"),
]

_STATE_ADAPTER: TypeAdapter = TypeAdapter(ConversationState)


class ConversationStateStore:
    """Loads, creates and updates conversations and their typed state."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, conversation_id: str) -> ChatConversation | None:
        return self.db.get(ChatConversation, conversation_id)

    def ensure_conversation(
        self,
        conversation_id: str,
        tenant_id: str,
        user_id: str | None = None,
        agent_id: str | None = None,
    ) -> ChatConversation:
        """Return the conversation, creating it on the first message.

        Raises:
            RouterError: E-1002 if the id belongs to another tenant.
        """
        conversation = self.get(conversation_id)
        if conversation is not None:
            if conversation.customer_id != tenant_id:
                raise RouterError.from_code(
                    "E-1002", conversation_id=conversation_id
                )
            return conversation

        conversation = ChatConversation(
            id=conversation_id,
            customer_id=tenant_id,
            user_id=user_id,
            agent_id=agent_id,
            status=ConversationStatus.open.value,
        )
        conversation.meta = {"state": IdleState().model_dump()}
        self.db.add(conversation)
        self.db.commit()
        logger.info("Opened conversation %s for tenant %s", conversation_id, tenant_id)
        return conversation

    def load(self, conversation: ChatConversation) -> IdleState | AwaitingInputsState | AwaitingConfirmationState:
        """Parse the stored state; unreadable state is treated as idle."""
        raw = conversation.meta.get("state")
        if not raw:
            return IdleState(last_intent=conversation.last_intent)
        try:
            return _STATE_ADAPTER.validate_python(raw)
        except PydanticValidationError as e:
            logger.warning(
                "Discarding unreadable state on conversation %s: %s",
                conversation.id,
                e,
            )
            return IdleState(last_intent=conversation.last_intent)

    def save(
        self,
        conversation: ChatConversation,
        state: IdleState | AwaitingInputsState | AwaitingConfirmationState,
        last_intent: str | None = None,
    ) -> None:
        """Persist a new state, optionally recording last_intent.

        Other keys in meta are preserved.
        """
        meta = conversation.meta
        meta["state"] = state.model_dump()
        conversation.meta = meta
        if last_intent is not None:
            conversation.last_intent = last_intent
        self.db.commit()

    def close(self, conversation: ChatConversation) -> None:
        conversation.status = ConversationStatus.closed.value
        conversation.closed_at = utc_now_iso()
        self.db.commit()

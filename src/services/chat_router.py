"""Conversational command router pipeline.

One user message produces exactly one outcome. Stages run in order and
any stage may end the request:

    classify -> policy -> resolve batch -> negotiate inputs
      -> [confirmation pause] -> preflight -> concurrency -> dispatch

Response states returned to the client:

    smalltalk               text didn't classify; canned reply
    needs_inputs            required inputs missing (conversation keeps progress)
    awaiting_confirmation   a confirm policy matched; approval pending
    preflight_block         agent failed safety checks
    task_queued             run started
    done                    any other terminal outcome, with a message

Every decision is recorded as a ChatEvent. A per-request deadline is
checked between stages.

Usage:
    router = ChatRouter(db, catalog, settings)
    result = router.route(tenant_id, user_id, agent_id, conversation_id, text)
    return result.to_response()
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import RouterSettings
from src.db.models import (
    ChatConversation,
    ChatEventType,
    CommandConfirmation,
    ConversationStatus,
    ScriptBatch,
)
from src.errors import ConfirmationStateError, DomainError, RouterError
from src.orchestrator.input_extraction import extract_inputs
from src.orchestrator.intent_catalog import IntentCatalog
from src.orchestrator.intent_classifier import (
    classify,
    is_confirmation_response,
    is_rejection_response,
    smalltalk_reply,
)
from src.services.batch_resolver import BatchResolver
from src.services.chat_event_logger import ChatEventLogger
from src.services.concurrency_guard import ConcurrencyGuard
from src.services.confirmation_service import ConfirmationService
from src.services.conversation_state import (
    AwaitingConfirmationState,
    AwaitingInputsState,
    ConversationStateStore,
    IdleState,
)
from src.services.input_negotiator import InputNegotiator
from src.services.policy_gate import PolicyGate
from src.services.preflight import PreflightEvaluator
from src.services.run_dispatcher import RunDispatcher

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred processing your request."
DEADLINE_MESSAGE = "The request took too long to process. Please try again."
CLOSED_MESSAGE = "This conversation is closed. Start a new conversation to continue."
CANCELLED_MESSAGE = "Command cancelled."
CONFIRMATION_EXPIRED_MESSAGE = (
    "This confirmation is no longer pending. Please issue the command again."
)


@dataclass
class RouterResult:
    """Outcome of one router request.

    Attributes:
        state: Client-facing state (see module docstring).
        outcome: Internal terminal outcome, e.g. "policy_blocked",
            "batch_not_found", "concurrency_blocked", "dispatch_failed".
        message: Text for the user.
        http_status: Status code the API should answer with.
    """

    state: str
    outcome: str
    message: str | None = None
    run_id: str | None = None
    schema: dict[str, Any] | None = None
    defaults: dict[str, Any] | None = None
    errors: dict[str, str] | None = None
    details: list[str] | None = None
    confirmation_id: str | None = None
    expires_at: str | None = None
    http_status: int = 200
    intent: str | None = field(default=None, repr=False)

    def to_response(self) -> dict[str, Any]:
        """Serialize to the wire shape, omitting empty fields."""
        body: dict[str, Any] = {"state": self.state}
        for key in (
            "message", "run_id", "schema", "defaults", "errors",
            "details", "confirmation_id", "expires_at",
        ):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        return body


class Deadline:
    """Wall-clock budget for one request."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires = clock() + seconds

    def expired(self) -> bool:
        return self._clock() >= self._expires


class ChatRouter:
    """Runs the router pipeline for one request at a time.

    Attributes:
        db: SQLAlchemy session shared by every stage.
        catalog: Injected intent catalog.
        settings: Router behaviour switches.
    """

    def __init__(
        self,
        db: Session,
        catalog: IntentCatalog,
        settings: RouterSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.catalog = catalog
        self.settings = settings
        self.clock = clock

        self.events = ChatEventLogger(db)
        self.states = ConversationStateStore(db)
        self.policy_gate = PolicyGate(db, settings)
        self.resolver = BatchResolver(db, catalog)
        self.negotiator = InputNegotiator(db, catalog)
        self.preflight = PreflightEvaluator(db)
        self.concurrency = ConcurrencyGuard(db, settings)
        self.dispatcher = RunDispatcher(db, self.events)
        self.confirmations = ConfirmationService(db, settings.confirmation_ttl_hours)

    # =========================================================================
    # Entry points
    # =========================================================================

    def route(
        self,
        tenant_id: str,
        user_id: str,
        agent_id: str,
        conversation_id: str,
        text: str,
        inputs: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> RouterResult:
        """Handle one user message.

        Args:
            tenant_id: Tenant the request belongs to.
            user_id: Requesting user.
            agent_id: Target agent.
            conversation_id: Conversation (created on first use).
            text: Raw user message.
            inputs: Optional structured inputs from a client form.
            request_id: Optional idempotency id for dispatch.

        Returns:
            RouterResult. Unexpected failures yield state "done" with
            http_status 500.

        Raises:
            RouterError: E-1001 for a blank message, E-1002 for a
                conversation owned by another tenant.
        """
        if not text or not text.strip():
            raise RouterError.from_code("E-1001")
        try:
            return self._route(
                tenant_id, user_id, agent_id, conversation_id, text, inputs, request_id
            )
        except (RouterError, DomainError):
            self.db.rollback()
            raise
        except Exception:
            logger.exception("Router failed for conversation %s", conversation_id)
            return self._internal_error(conversation_id, agent_id)

    def resume(
        self,
        confirmation_id: str,
        user_id: str,
        request_id: str | None = None,
    ) -> RouterResult:
        """Approve a pending confirmation and continue at preflight.

        Raises:
            NotFoundError: If the confirmation does not exist.
            ConfirmationStateError: If it is no longer pending.
        """
        confirmation = self.confirmations.approve(confirmation_id, user_id)
        try:
            return self._continue_after_approval(confirmation, user_id, request_id)
        except (RouterError, DomainError):
            self.db.rollback()
            raise
        except Exception:
            logger.exception("Resume failed for confirmation %s", confirmation_id)
            return self._internal_error(confirmation.conversation_id, confirmation.agent_id)

    def reject(
        self, confirmation_id: str, user_id: str, reason: str | None = None
    ) -> RouterResult:
        """Deny a pending confirmation and return the conversation to idle.

        Raises:
            NotFoundError: If the confirmation does not exist.
            ConfirmationStateError: If it is no longer pending.
        """
        confirmation = self.confirmations.deny(confirmation_id, user_id, reason)
        conversation = self._conversation_for(confirmation)
        if conversation is not None:
            self._clear_confirmation_state(conversation, confirmation_id)
            self.events.log(
                conversation.id,
                confirmation.agent_id,
                ChatEventType.confirmation_rejected,
                {"confirmation_id": confirmation_id, "reason": confirmation.rejection_reason},
                ref_id=confirmation_id,
            )
        return RouterResult(state="done", outcome="confirmation_rejected", message=CANCELLED_MESSAGE)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _route(
        self,
        tenant_id: str,
        user_id: str,
        agent_id: str,
        conversation_id: str,
        text: str,
        inputs: dict[str, Any] | None,
        request_id: str | None,
    ) -> RouterResult:
        deadline = Deadline(self.settings.request_deadline_seconds, self.clock)
        conversation = self.states.ensure_conversation(
            conversation_id, tenant_id, user_id=user_id, agent_id=agent_id
        )
        if conversation.status == ConversationStatus.closed.value:
            return self._closed(conversation, agent_id)

        state = self.states.load(conversation)
        if isinstance(state, AwaitingConfirmationState):
            if is_confirmation_response(text):
                return self._answer_confirmation(conversation, state, user_id, True, request_id)
            if is_rejection_response(text):
                return self._answer_confirmation(conversation, state, user_id, False, request_id)

        intent = classify(text, self.catalog)
        continued = False
        if intent is None and isinstance(state, AwaitingInputsState):
            if inputs or extract_inputs(text, state.intent, self.catalog):
                intent = state.intent
                continued = True

        if intent is None:
            reply = smalltalk_reply(text)
            self.events.log(
                conversation.id, agent_id, ChatEventType.smalltalk_response,
                {"text": text[:100], "response": reply},
            )
            return RouterResult(state="smalltalk", outcome="smalltalk", message=reply)

        self.events.log(
            conversation.id, agent_id, ChatEventType.intent_classified,
            {"intent": intent, "text": text[:100], "continued": continued},
        )

        if deadline.expired():
            return self._deadline_exceeded(conversation.id, agent_id, "policy")
        policy = self.policy_gate.check_policy(tenant_id, intent, text, agent_id)
        if policy.reason == "fail_open":
            self.events.log(
                conversation.id, agent_id, ChatEventType.policy_fail_open, {"intent": intent}
            )
        if policy.blocked:
            self.events.log(
                conversation.id, agent_id, ChatEventType.policy_blocked,
                {"intent": intent, "policy": policy.policy_name, "reason": policy.reason},
            )
            return RouterResult(
                state="done", outcome="policy_blocked", message=policy.message, intent=intent
            )

        if deadline.expired():
            return self._deadline_exceeded(conversation.id, agent_id, "resolve")
        batch = self.resolver.resolve_batch(tenant_id, intent, agent_id)
        if batch is None:
            self.events.log(
                conversation.id, agent_id, ChatEventType.batch_not_found, {"intent": intent}
            )
            return RouterResult(
                state="done",
                outcome="batch_not_found",
                message=f"Sorry, I don't know how to {intent.replace('_', ' ')} on this system.",
                intent=intent,
            )

        if deadline.expired():
            return self._deadline_exceeded(conversation.id, agent_id, "inputs")
        negotiation = self.negotiator.negotiate(conversation, batch, text, intent, inputs)
        if negotiation.state == "error":
            self.events.log(
                conversation.id, agent_id, ChatEventType.router_error,
                {"stage": "inputs", "batch_id": batch.id},
            )
            return RouterResult(
                state="done", outcome="input_error", message=negotiation.message, intent=intent
            )
        if negotiation.state == "needs_inputs":
            self.events.log(
                conversation.id, agent_id, ChatEventType.input_request,
                {"intent": intent, "batch_id": batch.id, "missing": sorted(negotiation.errors)},
            )
            return RouterResult(
                state="needs_inputs",
                outcome="needs_inputs",
                schema=negotiation.schema,
                defaults=negotiation.defaults,
                errors=negotiation.errors,
                intent=intent,
            )
        self.events.log(
            conversation.id, agent_id, ChatEventType.inputs_validated,
            {"intent": intent, "batch_id": batch.id, "inputs": negotiation.inputs},
        )

        if policy.requires_confirmation:
            return self._request_confirmation(
                conversation, batch, agent_id, user_id, intent, text,
                negotiation.inputs, policy.policy, policy.message,
            )

        return self._execute(
            conversation, batch, agent_id, tenant_id, negotiation.inputs,
            request_id, user_id, deadline,
        )

    def _execute(
        self,
        conversation: ChatConversation,
        batch: ScriptBatch,
        agent_id: str,
        tenant_id: str,
        inputs: dict[str, Any],
        request_id: str | None,
        user_id: str | None,
        deadline: Deadline,
    ) -> RouterResult:
        """Preflight, concurrency and dispatch: the tail shared with resume()."""
        conversation_id = conversation.id
        batch_id = batch.id
        batch_name = batch.name

        if deadline.expired():
            return self._deadline_exceeded(conversation_id, agent_id, "preflight")
        preflight = self.preflight.run_preflight(agent_id, batch)
        if preflight.failed:
            self.events.log(
                conversation_id, agent_id, ChatEventType.preflight_failed,
                {"batch_id": batch_id, "details": preflight.details},
            )
            return RouterResult(
                state="preflight_block", outcome="preflight_block", details=preflight.details
            )
        self.events.log(
            conversation_id, agent_id, ChatEventType.preflight_passed, {"batch_id": batch_id}
        )

        if deadline.expired():
            return self._deadline_exceeded(conversation_id, agent_id, "concurrency")
        concurrency = self.concurrency.check_concurrency(batch, agent_id, tenant_id)
        if concurrency.reason == "fail_open":
            self.events.log(
                conversation_id, agent_id, ChatEventType.concurrency_fail_open,
                {"batch_id": batch_id},
            )
        if concurrency.blocked:
            return self._concurrency_blocked(conversation_id, agent_id, batch_id, concurrency)

        if deadline.expired():
            return self._deadline_exceeded(conversation_id, agent_id, "dispatch")
        dispatch = self.dispatcher.enqueue(
            batch, agent_id, tenant_id, conversation_id, inputs,
            request_id=request_id, actor=user_id,
        )
        if dispatch.blocked is not None:
            return self._concurrency_blocked(conversation_id, agent_id, batch_id, dispatch.blocked)
        if not dispatch.success:
            self.events.log(
                conversation_id, agent_id, ChatEventType.dispatch_failed, {"batch_id": batch_id}
            )
            return RouterResult(state="done", outcome="dispatch_failed", message=dispatch.message)

        return RouterResult(
            state="task_queued",
            outcome="task_queued",
            message=f"Task queued successfully. Starting {batch_name}...",
            run_id=dispatch.run_id,
        )

    # =========================================================================
    # Confirmation round-trip
    # =========================================================================

    def _request_confirmation(
        self,
        conversation: ChatConversation,
        batch: ScriptBatch,
        agent_id: str,
        user_id: str,
        intent: str,
        text: str,
        inputs: dict[str, Any],
        policy: Any,
        message: str | None,
    ) -> RouterResult:
        confirmation = self.confirmations.create(
            tenant_id=conversation.customer_id,
            agent_id=agent_id,
            command_text=text,
            params=inputs,
            conversation_id=conversation.id,
            policy_id=policy.id if policy is not None else None,
            batch_id=batch.id,
            intent=intent,
            requested_by=user_id,
        )
        self.states.save(
            conversation,
            AwaitingConfirmationState(
                intent=intent,
                batch_id=batch.id,
                confirmation_id=confirmation.id,
                inputs=inputs,
            ),
        )
        self.events.log(
            conversation.id, agent_id, ChatEventType.confirmation_requested,
            {"intent": intent, "policy": policy.policy_name if policy else None},
            ref_id=confirmation.id,
        )
        return RouterResult(
            state="awaiting_confirmation",
            outcome="awaiting_confirmation",
            message=message,
            confirmation_id=confirmation.id,
            expires_at=confirmation.expires_at,
            intent=intent,
        )

    def _answer_confirmation(
        self,
        conversation: ChatConversation,
        state: AwaitingConfirmationState,
        user_id: str,
        approve: bool,
        request_id: str | None,
    ) -> RouterResult:
        """Handle a yes/no chat reply to a pending confirmation."""
        try:
            if approve:
                confirmation = self.confirmations.approve(state.confirmation_id, user_id)
            else:
                return self.reject(state.confirmation_id, user_id)
        except ConfirmationStateError:
            self.states.save(conversation, IdleState(last_intent=conversation.last_intent))
            return RouterResult(
                state="done",
                outcome="confirmation_unavailable",
                message=CONFIRMATION_EXPIRED_MESSAGE,
            )
        return self._continue_after_approval(confirmation, user_id, request_id)

    def _continue_after_approval(
        self,
        confirmation: CommandConfirmation,
        user_id: str,
        request_id: str | None,
    ) -> RouterResult:
        deadline = Deadline(self.settings.request_deadline_seconds, self.clock)
        conversation = self._conversation_for(confirmation)
        if conversation is None:
            # Confirmation outlived its conversation; track the run under a new one.
            conversation = self.states.ensure_conversation(
                confirmation.id,
                confirmation.customer_id,
                user_id=confirmation.requested_by,
                agent_id=confirmation.agent_id,
            )
            confirmation.conversation_id = conversation.id
            self.db.commit()
        self._clear_confirmation_state(conversation, confirmation.id)
        if conversation.status == ConversationStatus.closed.value:
            return self._closed(conversation, confirmation.agent_id, confirmation.id)
        self.events.log(
            conversation.id, confirmation.agent_id, ChatEventType.confirmation_approved,
            {"confirmation_id": confirmation.id, "approved_by": user_id},
            ref_id=confirmation.id,
        )

        batch = self.db.get(ScriptBatch, confirmation.batch_id) if confirmation.batch_id else None
        if batch is None or batch.active_version is None:
            intent = confirmation.intent or "run this command"
            self.events.log(
                conversation.id, confirmation.agent_id, ChatEventType.batch_not_found,
                {"intent": intent},
            )
            return RouterResult(
                state="done",
                outcome="batch_not_found",
                message=f"Sorry, I don't know how to {intent.replace('_', ' ')} on this system.",
            )

        return self._execute(
            conversation, batch, confirmation.agent_id, confirmation.customer_id,
            confirmation.params, request_id, user_id, deadline,
        )

    def _closed(
        self,
        conversation: ChatConversation,
        agent_id: str,
        confirmation_id: str | None = None,
    ) -> RouterResult:
        payload: dict[str, Any] = {}
        if confirmation_id:
            payload["confirmation_id"] = confirmation_id
        self.events.log(
            conversation.id, agent_id, ChatEventType.conversation_closed, payload,
            ref_id=confirmation_id,
        )
        return RouterResult(state="done", outcome="conversation_closed", message=CLOSED_MESSAGE)

    def _conversation_for(self, confirmation: CommandConfirmation) -> ChatConversation | None:
        if not confirmation.conversation_id:
            return None
        return self.states.get(confirmation.conversation_id)

    def _clear_confirmation_state(
        self, conversation: ChatConversation, confirmation_id: str
    ) -> None:
        state = self.states.load(conversation)
        if (
            isinstance(state, AwaitingConfirmationState)
            and state.confirmation_id == confirmation_id
        ):
            self.states.save(conversation, IdleState(last_intent=conversation.last_intent))

    # =========================================================================
    # Terminal helpers
    # =========================================================================

    def _concurrency_blocked(
        self, conversation_id: str, agent_id: str, batch_id: str, decision: Any
    ) -> RouterResult:
        self.events.log(
            conversation_id, agent_id, ChatEventType.concurrency_blocked,
            {
                "batch_id": batch_id,
                "reason": decision.reason,
                "agent_runs": decision.agent_runs,
                "tenant_runs": decision.tenant_runs,
            },
        )
        return RouterResult(state="done", outcome="concurrency_blocked", message=decision.message)

    def _deadline_exceeded(self, conversation_id: str, agent_id: str, stage: str) -> RouterResult:
        logger.warning(
            "Request deadline of %ss exceeded before %s (conversation %s)",
            self.settings.request_deadline_seconds,
            stage,
            conversation_id,
        )
        self.events.log(
            conversation_id, agent_id, ChatEventType.deadline_exceeded, {"stage": stage}
        )
        return RouterResult(state="done", outcome="deadline_exceeded", message=DEADLINE_MESSAGE)

    def _internal_error(self, conversation_id: str | None, agent_id: str | None) -> RouterResult:
        self.db.rollback()
        try:
            known = bool(conversation_id) and self.states.get(conversation_id) is not None
        except SQLAlchemyError:
            self.db.rollback()
            known = False
        if known:
            self.events.log(
                conversation_id, agent_id, ChatEventType.router_error, {"stage": "unhandled"}
            )
        return RouterResult(
            state="done", outcome="error", message=GENERIC_ERROR_MESSAGE, http_status=500
        )

"""Multi-turn collection and validation of batch inputs.

Inputs accumulate across turns of one conversation: each turn's extracted
values (and any structured inputs sent with the request) are merged over
what earlier turns collected for the same intent and batch. Once every
required field has a value or a default, and every value passes the
batch's JSON Schema, the inputs are returned for dispatch.

Validation uses jsonschema.Draft7Validator and collects ALL errors so the
client can re-prompt for every problem at once.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

import jsonschema
from jsonschema import Draft7Validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import ChatConversation, ScriptBatch
from src.orchestrator.input_extraction import extract_inputs
from src.orchestrator.intent_catalog import IntentCatalog
from src.services.conversation_state import (
    AwaitingInputsState,
    ConversationStateStore,
    IdleState,
)

logger = logging.getLogger(__name__)

INPUT_ERROR_MESSAGE = "Error processing inputs"


@dataclass
class NegotiationResult:
    """Outcome of one negotiation turn.

    Attributes:
        state: "valid" (ready to dispatch), "needs_inputs" (re-prompt) or
            "error" (schema or storage failure).
        inputs: Resolved inputs (complete when valid, partial otherwise).
        schema: The batch's inputs schema, echoed for the client form.
        defaults: The batch's input defaults.
        errors: Field name to error message.
        message: Error text when state is "error".
    """

    state: Literal["valid", "needs_inputs", "error"]
    inputs: dict[str, Any] = field(default_factory=dict)
    schema: dict[str, Any] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    message: str | None = None


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _error_field(error: jsonschema.ValidationError) -> str:
    """Top-level input name an error refers to ("inputs" for root errors)."""
    path_parts = list(error.absolute_path)
    if not path_parts:
        return "inputs"
    return str(path_parts[0])


def validate_inputs(
    inputs: dict[str, Any], schema: dict[str, Any]
) -> dict[str, str]:
    """Check value types and formats against the schema, ignoring 'required'.

    Presence is handled separately so that missing fields produce the
    "<field> is required" message rather than jsonschema's wording.

    Returns:
        Field name to first error message for that field.

    Raises:
        jsonschema.SchemaError: If the schema itself is invalid.
    """
    type_schema = copy.deepcopy(schema)
    type_schema.pop("required", None)
    Draft7Validator.check_schema(type_schema)
    validator = Draft7Validator(
        type_schema, format_checker=Draft7Validator.FORMAT_CHECKER
    )

    errors: dict[str, str] = {}
    ordered = sorted(
        validator.iter_errors(inputs),
        key=lambda e: [str(part) for part in e.absolute_path],
    )
    for error in ordered:
        errors.setdefault(_error_field(error), error.message)
    return errors


class InputNegotiator:
    """Merges, validates and caches batch inputs for a conversation."""

    def __init__(self, db: Session, catalog: IntentCatalog) -> None:
        self.db = db
        self.catalog = catalog
        self.states = ConversationStateStore(db)

    def negotiate(
        self,
        conversation: ChatConversation,
        batch: ScriptBatch,
        text: str,
        intent: str,
        supplied: dict[str, Any] | None = None,
    ) -> NegotiationResult:
        """Run one negotiation turn.

        Args:
            conversation: Conversation holding cached partial inputs.
            batch: Resolved batch whose schema applies.
            text: Raw user message to extract values from.
            intent: Classified (or continued) intent.
            supplied: Structured inputs sent with the request; they win
                over extracted and cached values unless blank.

        Returns:
            NegotiationResult. On "valid" the conversation returns to idle
            with last_intent set; on "needs_inputs" the merged partial set
            is cached and last_intent is left unchanged.
        """
        schema = batch.inputs_schema
        defaults = batch.inputs_defaults

        state = self.states.load(conversation)
        cached: dict[str, Any] = {}
        if (
            isinstance(state, AwaitingInputsState)
            and state.intent == intent
            and state.batch_id == batch.id
        ):
            cached = dict(state.partial)

        merged = {
            **cached,
            **extract_inputs(text, intent, self.catalog),
            **{k: v for k, v in (supplied or {}).items() if not _is_missing(v)},
        }

        properties = schema.get("properties") or {}
        required = list(schema.get("required") or [])
        declared = set(properties) | set(required)
        merged = {k: v for k, v in merged.items() if k in declared}

        errors: dict[str, str] = {}
        resolved: dict[str, Any] = {}
        for name in required:
            value = merged.get(name)
            if _is_missing(value):
                value = defaults.get(name)
            if _is_missing(value):
                errors[name] = f"{name} is required"
            else:
                resolved[name] = value
        for name in properties:
            if name in resolved:
                continue
            if not _is_missing(merged.get(name)):
                resolved[name] = merged[name]
            elif not _is_missing(defaults.get(name)):
                resolved[name] = defaults[name]

        try:
            type_errors = validate_inputs(resolved, schema)
        except jsonschema.SchemaError as e:
            logger.error("Batch %s has an invalid inputs schema: %s", batch.id, e.message)
            return NegotiationResult(
                state="error", schema=schema, defaults=defaults,
                message=INPUT_ERROR_MESSAGE,
            )
        for name, message in type_errors.items():
            errors.setdefault(name, message)
            resolved.pop(name, None)

        try:
            if errors:
                partial = {
                    k: v for k, v in merged.items()
                    if k not in type_errors and not _is_missing(v)
                }
                self.states.save(
                    conversation,
                    AwaitingInputsState(intent=intent, batch_id=batch.id, partial=partial),
                )
                return NegotiationResult(
                    state="needs_inputs",
                    inputs=partial,
                    schema=schema,
                    defaults=defaults,
                    errors=errors,
                )

            self.states.save(conversation, IdleState(last_intent=intent), last_intent=intent)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Failed to store inputs for conversation %s: %s", conversation.id, e
            )
            return NegotiationResult(
                state="error", schema=schema, defaults=defaults,
                message=INPUT_ERROR_MESSAGE,
            )

        return NegotiationResult(
            state="valid", inputs=resolved, schema=schema, defaults=defaults
        )

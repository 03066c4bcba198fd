"""Intent layer for the chat router.

Main Entry Points:
    IntentCatalog: Injectable registry of intents and their batches.
    classify: Map free text to an intent label (None = smalltalk).
    extract_inputs: Pull batch inputs out of a message.
"""

from src.orchestrator.input_extraction import extract_inputs
from src.orchestrator.intent_catalog import (
    IntentCatalog,
    build_intent_catalog,
    default_intent_catalog,
    load_intent_catalog,
)
from src.orchestrator.intent_classifier import (
    classify,
    is_confirmation_response,
    is_rejection_response,
    normalize_text,
    smalltalk_reply,
)
from src.orchestrator.models.intent import InputExtractor, IntentDefinition

__all__ = [
    "IntentCatalog",
    "IntentDefinition",
    "InputExtractor",
    "build_intent_catalog",
    "default_intent_catalog",
    "load_intent_catalog",
    "classify",
    "smalltalk_reply",
    "normalize_text",
    "is_confirmation_response",
    "is_rejection_response",
    "extract_inputs",
]

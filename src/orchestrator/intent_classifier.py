"""Rule-based intent classification and conversational heuristics.

classify() is pure: the same text and catalog always give the same label.
Unmatched text is smalltalk and gets a canned reply from smalltalk_reply().
"""

import re

from src.orchestrator.intent_catalog import IntentCatalog

_WHITESPACE = re.compile(r"\s+")
_GREETING = re.compile(r"\b(hello|hi|hey)\b")

GREETING_REPLY = (
    "Hello! I can help you manage your servers. Try asking me to install "
    "WordPress, check system resources, or manage services."
)
HELP_REPLY = (
    "I can help you with server management tasks like:\n"
    "• Installing WordPress\n"
    "• Checking CPU, memory, and disk usage\n"
    "• Restarting services\n"
    "• Backing up databases\n"
    "• Updating systems\n\n"
    "Just tell me what you'd like to do!"
)
THANKS_REPLY = "You're welcome! Let me know if you need help with anything else."
DEFAULT_REPLY = (
    "I'm here to help with server management tasks. You can ask me to "
    "install software, check system status, manage services, or perform "
    "maintenance tasks."
)

_AFFIRMATIVE = {
    "yes", "y", "ok", "okay", "confirm", "confirmed", "approve",
    "proceed", "continue", "go ahead", "do it",
}
_NEGATIVE = {"no", "n", "cancel", "deny", "stop", "abort", "don't", "do not"}


def normalize_text(text: str | None) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.strip().lower())


def classify(text: str | None, catalog: IntentCatalog) -> str | None:
    """Map free text to an intent label.

    Two tiers, each in catalog order: regex patterns first, then keyword
    groups. The first match wins.

    Args:
        text: Raw user message.
        catalog: Intent catalog to match against.

    Returns:
        Intent name, or None when the text is smalltalk.
    """
    normalized = normalize_text(text)
    if not normalized:
        return None

    for intent in catalog:
        if intent.matches_pattern(normalized):
            return intent.name

    for intent in catalog:
        if intent.matches_keywords(normalized):
            return intent.name

    return None


def smalltalk_reply(text: str | None) -> str:
    """Canned reply for text that didn't classify to an intent."""
    normalized = normalize_text(text)
    if _GREETING.search(normalized):
        return GREETING_REPLY
    if "help" in normalized or "what can you do" in normalized:
        return HELP_REPLY
    if "thank" in normalized:
        return THANKS_REPLY
    return DEFAULT_REPLY


def is_confirmation_response(message: str | None) -> bool:
    """True for short confirmation replies (yes/proceed/confirm)."""
    text = normalize_text(message).rstrip(".!")
    return text in _AFFIRMATIVE


def is_rejection_response(message: str | None) -> bool:
    """True for short rejection replies (no/cancel/deny)."""
    text = normalize_text(message).rstrip(".!")
    return text in _NEGATIVE

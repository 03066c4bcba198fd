"""Secret redaction for chat events and delivery errors.

Chat events persist user inputs (e.g. a WordPress admin password typed
into a re-prompt form), and dispatch errors may echo request headers.
Both pass through here before reaching the database.
"""

import re
from typing import Any

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "apikey", "password",
    "passwd", "credential", "private_key",
})

# Keys whose entire value is redacted (regardless of content type)
_CONTAINER_KEYS = frozenset({"credentials", "headers", "env"})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def _redact_value(value: Any, sensitive_patterns: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return redact_for_logging(value, sensitive_patterns)
    if isinstance(value, list):
        return [_redact_value(item, sensitive_patterns) for item in value]
    return value


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Redact sensitive values from a dict before it is logged or stored.

    Args:
        obj: Dict to redact (not mutated; a copy is returned).
        sensitive_patterns: Substring patterns whose matching keys' values
            are replaced. Matching is case-insensitive.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***',
        recursing into nested dicts and lists.
    """
    result = {}
    for key, value in obj.items():
        key_str = str(key)
        if key_str.lower() in _CONTAINER_KEYS or _is_sensitive_key(key_str, sensitive_patterns):
            result[key] = _REDACTED
        else:
            result[key] = _redact_value(value, sensitive_patterns)
    return result


_SENSITIVE_KEYWORDS = (
    r"secret|token|password|passwd|api_key|apikey|authorization|credential"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key=value / key: value
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Redact key=value secrets from free text and truncate it.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the result.

    Returns:
        Sanitized message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized

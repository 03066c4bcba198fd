"""Error code registry with E-XXXX format codes.

This module defines the error code system for the chat router, organizing
errors into categories:
- E-1xxx: Request and input errors
- E-2xxx: Policy errors
- E-3xxx: Batch catalog and dispatch errors
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    REQUEST = "request"  # E-1xxx: Request and input errors
    POLICY = "policy"  # E-2xxx: Policy errors
    DISPATCH = "dispatch"  # E-3xxx: Batch catalog and dispatch errors
    SYSTEM = "system"  # E-4xxx: System/internal errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action user should take
    is_retryable: bool = False  # Can be retried without user action


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Request errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.REQUEST,
        title="Empty Message",
        message_template="The message text is empty.",
        remediation="Type a request such as 'check disk usage' and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.REQUEST,
        title="Conversation Tenant Mismatch",
        message_template="Conversation '{conversation_id}' belongs to another tenant.",
        remediation="Start a new conversation for this tenant.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.REQUEST,
        title="Invalid Run Status",
        message_template="Status '{status}' is not a terminal run status.",
        remediation="Use one of: succeeded, failed, cancelled.",
    ),
    # Policy errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.POLICY,
        title="Invalid Policy Pattern",
        message_template="Policy '{policy_name}' has an invalid {match_type} pattern: {error}",
        remediation="Correct the policy's match value.",
    ),
    # Dispatch errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.DISPATCH,
        title="Dispatch Delivery Failed",
        message_template="Could not deliver run '{run_id}' to the agent channel: {error}",
        remediation="The outbox relay retries pending messages on its next pass.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Intent Catalog Invalid",
        message_template="Intent catalog could not be loaded: {error}",
        remediation="Fix the intent catalog file referenced by router.intent_catalog_path.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]

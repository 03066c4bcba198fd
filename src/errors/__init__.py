"""Error handling framework for the chat router.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions mapped to HTTP status codes
- Error formatting utilities

Error categories:
- E-1xxx: Request and input errors
- E-2xxx: Policy errors
- E-3xxx: Batch catalog and dispatch errors
- E-4xxx: System/internal errors
"""

from src.errors.domain import (
    ConfirmationStateError,
    ConflictError,
    DomainError,
    InvalidVersionTransition,
    NotFoundError,
    RunStateError,
    ValidationError,
)
from src.errors.formatter import RouterError, format_error
from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "InvalidVersionTransition",
    "ConfirmationStateError",
    "RunStateError",
    # Formatter
    "RouterError",
    "format_error",
]

"""Unit tests for src/errors/registry.py and src/errors/formatter.py.

Tests verify:
- Every router error code is registered with the right category and title
- RouterError.from_code substitutes context into the message template
"""

import pytest

from src.errors import RouterError, format_error
from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    get_error,
    get_errors_by_category,
)


@pytest.mark.parametrize(
    "code,category,title",
    [
        ("E-1001", ErrorCategory.REQUEST, "Empty Message"),
        ("E-1002", ErrorCategory.REQUEST, "Conversation Tenant Mismatch"),
        ("E-1003", ErrorCategory.REQUEST, "Invalid Run Status"),
        ("E-2001", ErrorCategory.POLICY, "Invalid Policy Pattern"),
        ("E-3001", ErrorCategory.DISPATCH, "Dispatch Delivery Failed"),
        ("E-4001", ErrorCategory.SYSTEM, "Intent Catalog Invalid"),
    ],
)
def test_error_codes_registered(code, category, title):
    """All router error codes must be registered."""
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.title == title


def test_codes_match_their_keys():
    """Registry keys and ErrorCode.code agree."""
    for key, error in ERROR_REGISTRY.items():
        assert key == error.code


def test_codes_are_in_their_category_range():
    """The leading digit of a code identifies its category."""
    prefixes = {
        ErrorCategory.REQUEST: "E-1",
        ErrorCategory.POLICY: "E-2",
        ErrorCategory.DISPATCH: "E-3",
        ErrorCategory.SYSTEM: "E-4",
    }
    for category, prefix in prefixes.items():
        for error in get_errors_by_category(category):
            assert error.code.startswith(prefix)


def test_only_delivery_failure_is_retryable():
    """Delivery failures are retried by the relay; nothing else is."""
    retryable = [e.code for e in ERROR_REGISTRY.values() if e.is_retryable]
    assert retryable == ["E-3001"]


def test_unknown_code_returns_none():
    assert get_error("E-9999") is None


class TestRouterError:
    """Tests for RouterError construction and formatting."""

    def test_from_code_substitutes_context(self):
        """Placeholders are filled from keyword arguments."""
        error = RouterError.from_code("E-1002", conversation_id="conv-9")
        assert error.code == "E-1002"
        assert error.message == "Conversation 'conv-9' belongs to another tenant."
        assert error.remediation == "Start a new conversation for this tenant."
        assert str(error) == "E-1002: Conversation 'conv-9' belongs to another tenant."

    def test_from_code_keeps_template_when_context_missing(self):
        """Missing placeholders leave the template intact."""
        error = RouterError.from_code("E-1003")
        assert "{status}" in error.message

    def test_from_code_stores_details(self):
        error = RouterError.from_code(
            "E-3001", run_id="r1", error="boom", details={"attempt": 2}
        )
        assert error.details == {"attempt": 2}
        assert error.is_retryable is True

    def test_unknown_code(self):
        error = RouterError.from_code("E-9999")
        assert error.message == "Unknown error: E-9999"
        assert error.remediation == "Contact support."

    def test_to_dict(self):
        error = RouterError.from_code("E-1001")
        body = error.to_dict()
        assert body["code"] == "E-1001"
        assert body["is_retryable"] is False
        assert body["details"] == {}

    def test_format_error_includes_details_and_action(self):
        error = RouterError.from_code(
            "E-4001", error="bad.yaml: boom", details={"path": "bad.yaml"}
        )
        text = format_error(error)
        lines = text.splitlines()
        assert lines[0] == "E-4001: Intent catalog could not be loaded: bad.yaml: boom"
        assert "  path: bad.yaml" in lines
        assert lines[-1].startswith("  Action: ")

    def test_format_error_without_remediation(self):
        error = RouterError.from_code("E-1001")
        assert "Action" not in format_error(error, include_remediation=False)

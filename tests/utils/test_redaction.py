"""Tests for secret redaction utility."""

import pytest


class TestRedactForLogging:

    def test_redacts_sensitive_keys(self):
        from src.utils.redaction import redact_for_logging

        data = {"WP_ADMIN_PASSWORD": "hunter2", "DOMAIN": "example.com", "api_key": "k1"}
        result = redact_for_logging(data)
        assert result["WP_ADMIN_PASSWORD"] == "***REDACTED***"
        assert result["api_key"] == "***REDACTED***"
        assert result["DOMAIN"] == "example.com"

    def test_preserves_non_sensitive(self):
        from src.utils.redaction import redact_for_logging

        data = {"intent": "check_cpu", "text": "check cpu", "continued": False}
        result = redact_for_logging(data)
        assert result == data

    def test_handles_nested_dict(self):
        from src.utils.redaction import redact_for_logging

        data = {"inputs": {"DB_PASSWORD": "pw", "DB_NAME": "shop"}}
        result = redact_for_logging(data)
        assert result["inputs"]["DB_PASSWORD"] == "***REDACTED***"
        assert result["inputs"]["DB_NAME"] == "shop"

    def test_handles_list_of_dicts(self):
        from src.utils.redaction import redact_for_logging

        data = {"errors": [{"access_token": "leaked", "field": "x"}]}
        result = redact_for_logging(data)
        assert result["errors"][0]["access_token"] == "***REDACTED***"
        assert result["errors"][0]["field"] == "x"

    def test_empty_dict(self):
        from src.utils.redaction import redact_for_logging

        assert redact_for_logging({}) == {}

    def test_does_not_mutate_input(self):
        from src.utils.redaction import redact_for_logging

        data = {"token": "t"}
        redact_for_logging(data)
        assert data == {"token": "t"}

    def test_custom_sensitive_keys(self):
        from src.utils.redaction import redact_for_logging

        data = {"license": "abc", "name": "test"}
        result = redact_for_logging(data, sensitive_patterns=frozenset({"license"}))
        assert result["license"] == "***REDACTED***"
        assert result["name"] == "test"

    def test_case_insensitive_matching(self):
        from src.utils.redaction import redact_for_logging

        data = {"ClientSecret": "sec1", "ACCESS_TOKEN": "tok1", "Name": "web"}
        result = redact_for_logging(data)
        assert result["ClientSecret"] == "***REDACTED***"
        assert result["ACCESS_TOKEN"] == "***REDACTED***"
        assert result["Name"] == "web"

    def test_container_keys_fully_redacted(self):
        from src.utils.redaction import redact_for_logging

        data = {"env": {"PATH": "/usr/bin"}, "headers": ["x"], "name": "test"}
        result = redact_for_logging(data)
        assert result["env"] == "***REDACTED***"
        assert result["headers"] == "***REDACTED***"
        assert result["name"] == "test"


class TestSanitizeErrorMessage:

    def test_none_passes_through(self):
        from src.utils.redaction import sanitize_error_message

        assert sanitize_error_message(None) is None

    def test_plain_message_unchanged(self):
        from src.utils.redaction import sanitize_error_message

        assert sanitize_error_message("connection refused") == "connection refused"

    @pytest.mark.parametrize(
        "raw,leaked",
        [
            ("Authorization: Bearer abc.def.ghi rejected", "abc.def.ghi"),
            ('body {"token": "s3cr3t"} refused', "s3cr3t"),
            ("url?api_key=XYZ123 returned 401", "XYZ123"),
            ("password: hunter2 invalid", "hunter2"),
        ],
    )
    def test_secrets_redacted(self, raw, leaked):
        from src.utils.redaction import sanitize_error_message

        result = sanitize_error_message(raw)
        assert leaked not in result
        assert "***REDACTED***" in result

    def test_truncates_long_messages(self):
        from src.utils.redaction import sanitize_error_message

        result = sanitize_error_message("x" * 5000, max_length=100)
        assert len(result) == 100
        assert result.endswith("...")

"""Tests for pulling batch inputs out of user messages."""

from src.orchestrator.input_extraction import extract_inputs


class TestDefaultExtractors:

    def test_wordpress_domain_and_email(self, catalog):
        text = "install wordpress for domain example.com admin admin@example.com"
        assert extract_inputs(text, "install_wordpress", catalog) == {
            "DOMAIN": "example.com",
            "WP_ADMIN_EMAIL": "admin@example.com",
        }

    def test_email_keeps_original_case(self, catalog):
        """Extraction runs on the raw text, not the normalized one."""
        inputs = extract_inputs(
            "install wordpress site Shop.Example.org, mail Ops.Team@Example.org",
            "install_wordpress",
            catalog,
        )
        assert inputs["WP_ADMIN_EMAIL"] == "Ops.Team@Example.org"
        assert inputs["DOMAIN"] == "Shop.Example.org"

    def test_partial_extraction(self, catalog):
        inputs = extract_inputs("install wordpress please", "install_wordpress", catalog)
        assert inputs == {}

    def test_service_name(self, catalog):
        assert extract_inputs("Restart nginx now", "restart_service", catalog) == {
            "SERVICE_NAME": "nginx"
        }

    def test_intent_without_extractors(self, catalog):
        assert extract_inputs("check cpu", "check_cpu", catalog) == {}

    def test_unknown_intent(self, catalog):
        assert extract_inputs("anything", "launch_rockets", catalog) == {}

    def test_empty_text(self, catalog):
        assert extract_inputs("", "install_wordpress", catalog) == {}
        assert extract_inputs(None, "install_wordpress", catalog) == {}


class TestCustomExtractors:

    def test_first_matching_extractor_wins(self, tiny_catalog):
        inputs = extract_inputs("deploy app web-ui from project api", "deploy_app", tiny_catalog)
        assert inputs["APP"] == "web-ui"

    def test_later_extractor_fills_gap(self, tiny_catalog):
        inputs = extract_inputs("deploy project billing", "deploy_app", tiny_catalog)
        assert inputs["APP"] == "billing"

    def test_whole_match_group(self, tiny_catalog):
        inputs = extract_inputs("deploy app web v1.2.3", "deploy_app", tiny_catalog)
        assert inputs == {"APP": "web", "TAG": "v1.2.3"}

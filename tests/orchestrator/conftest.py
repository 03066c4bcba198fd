"""Pytest fixtures for intent layer tests."""

import pytest

from src.orchestrator.intent_catalog import IntentCatalog


@pytest.fixture
def tiny_catalog() -> IntentCatalog:
    """Two-intent catalog exercising every matching feature."""
    return IntentCatalog.from_dicts(
        [
            {
                "name": "deploy_app",
                "batch_name": "App Deployer",
                "patterns": [r"deploy\s+app"],
                "keywords": [["ship"], ["release", "build"]],
                "extractors": [
                    {"field": "APP", "pattern": r"app\s+([a-z0-9-]+)"},
                    {"field": "APP", "pattern": r"project\s+([a-z0-9-]+)"},
                    {"field": "TAG", "pattern": r"v\d+\.\d+\.\d+", "group": 0},
                ],
            },
            {
                "name": "check_logs",
                "batch_name": None,
                "patterns": [r"show\s+logs"],
            },
        ]
    )

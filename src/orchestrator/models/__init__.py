"""Pydantic models for the intent catalog."""

from src.orchestrator.models.intent import InputExtractor, IntentDefinition

__all__ = [
    "InputExtractor",
    "IntentDefinition",
]

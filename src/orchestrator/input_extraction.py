"""Pull batch inputs out of a user's message using catalog extractors."""

from typing import Any

from src.orchestrator.intent_catalog import IntentCatalog


def extract_inputs(text: str | None, intent: str, catalog: IntentCatalog) -> dict[str, Any]:
    """Run the intent's extractors over the original message text.

    Extraction runs on the un-normalized text so values such as e-mail
    addresses keep their case.

    Args:
        text: Raw user message.
        intent: Intent whose extractors apply.
        catalog: Catalog holding the intent definition.

    Returns:
        Mapping of input field to extracted value. Fields whose pattern
        didn't match are absent. When two extractors target the same
        field, the first match wins.
    """
    definition = catalog.get(intent)
    if definition is None or not text:
        return {}

    inputs: dict[str, Any] = {}
    for extractor in definition.extractors:
        if extractor.field in inputs:
            continue
        value = extractor.extract(text)
        if value is not None:
            inputs[extractor.field] = value
    return inputs

"""Injectable registry of intents, their patterns and their script batches.

The catalog is immutable once built. The router receives one at
construction time, so deployments can replace the built-in intents with a
YAML file without touching code:

    intents:
      - name: check_cpu
        batch_name: System Monitor
        patterns: ['check\\s+cpu', 'cpu\\s+usage']
        keywords: [[cpu, processor]]
      - name: install_wordpress
        batch_name: WordPress Installer
        patterns: ['install\\s+wordpress']
        keywords: [[wordpress, wp]]
        extractors:
          - {field: DOMAIN, pattern: '(?:domain|site|for)\\s+([a-z0-9.-]+\\.[a-z]{2,})'}
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from src.errors import RouterError
from src.orchestrator.models.intent import IntentDefinition

logger = logging.getLogger(__name__)


DOMAIN_PATTERN = r"(?:domain|site|for)\s+([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"
EMAIL_PATTERN = r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"
SERVICE_NAME_PATTERN = r"(?:restart|reboot|stop|start)\s+([a-zA-Z0-9_-]+)"

# Order matters: the first intent whose pattern (then keyword set) matches wins.
DEFAULT_INTENTS: list[dict[str, Any]] = [
    {
        "name": "install_wordpress",
        "batch_name": "WordPress Installer",
        "patterns": [
            r"install\s+wordpress",
            r"install\s+wp",
            r"wp\s+install",
            r"setup\s+wordpress",
            r"create\s+wordpress",
            r"deploy\s+wordpress",
        ],
        "keywords": [["wordpress", "wp"]],
        "extractors": [
            {"field": "DOMAIN", "pattern": DOMAIN_PATTERN, "group": 1},
            {
                "field": "WP_ADMIN_EMAIL",
                "pattern": EMAIL_PATTERN,
                "group": 0,
                "ignore_case": False,
            },
        ],
    },
    {
        "name": "check_cpu",
        "batch_name": "System Monitor",
        "patterns": [
            r"check\s+cpu",
            r"cpu\s+usage",
            r"cpu\s+status",
            r"processor\s+load",
            r"system\s+load",
        ],
        "keywords": [["cpu", "processor"]],
    },
    {
        "name": "check_disk",
        "batch_name": "System Monitor",
        "patterns": [
            r"check\s+disk",
            r"disk\s+usage",
            r"disk\s+space",
            r"storage\s+usage",
            r"free\s+space",
        ],
        "keywords": [["disk", "storage"]],
    },
    {
        "name": "check_memory",
        "batch_name": "System Monitor",
        "patterns": [
            r"check\s+memory",
            r"check\s+ram",
            r"memory\s+usage",
            r"ram\s+usage",
        ],
        "keywords": [["memory", "ram"]],
    },
    {
        "name": "restart_service",
        "batch_name": "Service Manager",
        "patterns": [
            r"restart\s+(.*)",
            r"reboot\s+(.*)",
            r"stop\s+(.*)",
            r"start\s+(.*)",
        ],
        "keywords": [["restart", "reboot"]],
        "extractors": [
            {"field": "SERVICE_NAME", "pattern": SERVICE_NAME_PATTERN, "group": 1},
        ],
    },
    {
        "name": "backup_database",
        "batch_name": "Database Backup",
        "patterns": [
            r"backup\s+database",
            r"backup\s+db",
            r"database\s+backup",
            r"export\s+database",
        ],
        "keywords": [["backup"], ["database", "db"]],
    },
    {
        "name": "update_system",
        "batch_name": "System Updater",
        "patterns": [
            r"update\s+system",
            r"system\s+update",
            r"upgrade\s+system",
            r"security\s+updates",
        ],
        "keywords": [["update"], ["system"]],
    },
]


class IntentCatalog:
    """Ordered, read-only collection of IntentDefinition entries.

    Attributes:
        intents: Definitions in match-priority order.
    """

    def __init__(self, intents: list[IntentDefinition]) -> None:
        names = [intent.name for intent in intents]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate intent names: {', '.join(duplicates)}")
        self.intents: tuple[IntentDefinition, ...] = tuple(intents)
        self._by_name = {intent.name: intent for intent in self.intents}

    def __iter__(self) -> Iterator[IntentDefinition]:
        return iter(self.intents)

    def __len__(self) -> int:
        return len(self.intents)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> IntentDefinition | None:
        """Look up an intent by name."""
        return self._by_name.get(name)

    def batch_name_for(self, intent: str) -> str | None:
        """Return the batch name an intent maps to, or None if unmapped."""
        definition = self._by_name.get(intent)
        return definition.batch_name if definition else None

    @classmethod
    def from_dicts(cls, entries: list[dict[str, Any]]) -> "IntentCatalog":
        """Build a catalog from plain dicts (YAML or DEFAULT_INTENTS shape).

        Raises:
            ValueError: If an entry is malformed or a pattern doesn't compile.
        """
        try:
            intents = [IntentDefinition.model_validate(entry) for entry in entries]
        except PydanticValidationError as e:
            raise ValueError(str(e)) from e
        return cls(intents)


def default_intent_catalog() -> IntentCatalog:
    """Return the built-in server-management intent catalog."""
    return IntentCatalog.from_dicts(DEFAULT_INTENTS)


def load_intent_catalog(path: str | Path) -> IntentCatalog:
    """Load an intent catalog from a YAML file.

    Args:
        path: YAML file with a top-level ``intents`` list.

    Returns:
        The parsed catalog.

    Raises:
        RouterError: E-4001 if the file is missing or invalid.
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        entries = data.get("intents") if isinstance(data, dict) else None
        if not isinstance(entries, list) or not entries:
            raise ValueError("expected a non-empty 'intents' list")
        catalog = IntentCatalog.from_dicts(entries)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise RouterError.from_code("E-4001", error=f"{path}: {e}") from e

    logger.info("Loaded %d intents from %s", len(catalog), path)
    return catalog


def build_intent_catalog(path: str | None) -> IntentCatalog:
    """Load the configured catalog, or the built-in one when path is unset."""
    if path:
        return load_intent_catalog(path)
    return default_intent_catalog()

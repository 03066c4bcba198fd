"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. explicit path (CLI --config flag or CHATROUTER_CONFIG)
2. ./chatrouter.yaml (working directory)
3. <user config dir>/config.yaml (see src.utils.paths)

Environment variables override YAML: CHATROUTER_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file exists the defaults below apply, still subject to env
overrides.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from src.utils.paths import get_config_dir

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "CHATROUTER_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DaemonConfig(BaseModel):
    """Configuration for the HTTP server process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    allowed_origins: str = "*"


class RouterSettings(BaseModel):
    """Behavioural switches for the router pipeline.

    fail_open_policy / fail_open_concurrency decide what happens when the
    policy or concurrency lookup itself errors: True lets the request
    through (availability), False rejects it (safety).
    """

    fail_open_policy: bool = True
    fail_open_concurrency: bool = True
    confirm_policy_mode: Literal["await", "auto_approve"] = "await"
    confirmation_ttl_hours: float = Field(default=24.0, gt=0)
    request_deadline_seconds: float = Field(default=10.0, gt=0)
    intent_catalog_path: str | None = None
    policy_text_excerpt: int = Field(default=200, gt=0)


class DispatchConfig(BaseModel):
    """Agent-dispatch channel used by the outbox relay."""

    publisher: Literal["log", "http"] = "log"
    url: str | None = None
    timeout_seconds: float = 5.0
    relay_batch_size: int = 50

    @model_validator(mode="after")
    def http_requires_url(self) -> "DispatchConfig":
        """The http publisher needs a target URL."""
        if self.publisher == "http" and not self.url:
            raise ValueError("dispatch.url is required when publisher is 'http'")
        return self


class ChatRouterConfig(BaseModel):
    """Top-level configuration for the chat router service."""

    daemon: DaemonConfig = DaemonConfig()
    router: RouterSettings = RouterSettings()
    dispatch: DispatchConfig = DispatchConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    env_path = os.environ.get("CHATROUTER_CONFIG", "").strip()
    if env_path:
        return Path(env_path)
    candidates = [
        Path.cwd() / "chatrouter.yaml",
        Path.cwd() / "chatrouter.yml",
        get_config_dir() / "config.yaml",
        get_config_dir() / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply CHATROUTER_<SECTION>_<KEY> env var overrides to config data.

    For example, ``CHATROUTER_ROUTER_FAIL_OPEN_POLICY=false`` maps to
    section ``router``, field ``fail_open_policy``. Keys for unknown
    sections are ignored.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    known_sections = sorted(
        ChatRouterConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()  # e.g. "router_fail_open_policy"
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Coerce to int, bool, or keep as string (pydantic handles floats)
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    data[matched_section][matched_field] = value.lower() == "true"
                else:
                    data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> ChatRouterConfig:
    """Load chat router configuration from YAML with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (CHATROUTER_CONFIG, cwd, user config dir).

    Returns:
        Parsed and validated ChatRouterConfig.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return ChatRouterConfig(**data)


@lru_cache(maxsize=1)
def get_config() -> ChatRouterConfig:
    """Return the process-wide configuration, loading it on first use.

    Tests call ``get_config.cache_clear()`` after changing the environment.
    """
    return load_config()

"""File path resolution using platformdirs.

CHATROUTER_DATA_DIR overrides the data directory. Otherwise paths use the
platform user directories:
  macOS: ~/Library/Application Support/chatrouter/
  Linux: ~/.local/share/chatrouter/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "chatrouter"


def get_data_dir() -> Path:
    """Return the directory for persistent data (SQLite database)."""
    override = os.environ.get("CHATROUTER_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_config_dir() -> Path:
    """Return the per-user config directory searched for config.yaml."""
    return Path(platformdirs.user_config_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "chatrouter.db"


def ensure_dirs_exist() -> None:
    """Create the data directory if it doesn't exist."""
    get_data_dir().mkdir(parents=True, exist_ok=True)

"""Tests for file path resolution."""

import os
from pathlib import Path
from unittest.mock import patch

from src.utils.paths import (
    ensure_dirs_exist,
    get_config_dir,
    get_data_dir,
    get_default_db_path,
)


def test_get_data_dir_returns_path():
    """Data dir should be a valid Path."""
    assert isinstance(get_data_dir(), Path)


def test_data_dir_env_override(tmp_path):
    """CHATROUTER_DATA_DIR replaces the platform data directory."""
    with patch.dict(os.environ, {"CHATROUTER_DATA_DIR": str(tmp_path)}):
        assert get_data_dir() == tmp_path


def test_data_dir_defaults_to_platformdirs():
    """Without the override, the platform user data dir is used."""
    with patch.dict(os.environ, {"CHATROUTER_DATA_DIR": ""}):
        assert "chatrouter" in str(get_data_dir()).lower()


def test_get_config_dir():
    assert "chatrouter" in str(get_config_dir()).lower()


def test_get_default_db_path(tmp_path):
    """Default DB path combines data dir + chatrouter.db."""
    with patch.dict(os.environ, {"CHATROUTER_DATA_DIR": str(tmp_path)}):
        result = get_default_db_path()
    assert result == tmp_path / "chatrouter.db"


def test_ensure_dirs_exist_creates_data_dir(tmp_path):
    target = tmp_path / "nested" / "data"
    with patch.dict(os.environ, {"CHATROUTER_DATA_DIR": str(target)}):
        ensure_dirs_exist()
    assert target.is_dir()


def test_database_url_env_wins():
    """DATABASE_URL takes priority over every other source."""
    from src.db.connection import get_database_url

    with patch.dict(os.environ, {"DATABASE_URL": "sqlite:///custom/path.db"}):
        assert get_database_url() == "sqlite:///custom/path.db"


def test_db_path_env_is_converted_to_url():
    from src.db.connection import get_database_url

    with patch.dict(os.environ, {"DATABASE_URL": "", "CHATROUTER_DB_PATH": "/tmp/router.db"}):
        assert get_database_url() == "sqlite:////tmp/router.db"


def test_default_database_url_uses_data_dir(tmp_path):
    from src.db.connection import get_database_url

    env = {"DATABASE_URL": "", "CHATROUTER_DB_PATH": "", "CHATROUTER_DATA_DIR": str(tmp_path)}
    with patch.dict(os.environ, env):
        assert get_database_url() == f"sqlite:///{tmp_path / 'chatrouter.db'}"

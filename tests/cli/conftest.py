"""Fixtures for CLI tests.

Commands open sessions through src.db.connection.get_db_context; these
fixtures point that at the in-memory test session.
"""

from contextlib import contextmanager

import pytest


@pytest.fixture(autouse=True)
def _isolate_cli(db_session, tmp_path, monkeypatch):
    """Run commands against the test session with no config file present."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CHATROUTER_CONFIG", raising=False)

    @contextmanager
    def _test_db_context():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    monkeypatch.setattr("src.db.connection.get_db_context", _test_db_context)

"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Database fixtures (in-memory SQLite session, file-based SQLite path)
- Factories for agents, script batches and command policies
- Router settings and the default intent catalog
"""

import os
import tempfile
from collections.abc import Callable, Generator
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import RouterSettings
from src.db.models import Agent, AgentStatus, Base, CommandPolicy, ScriptBatch
from src.orchestrator.intent_catalog import IntentCatalog, default_intent_catalog
from src.services.batch_service import BatchService
from src.services.policy_gate import create_policy
from tests.helpers import TENANT_ID, WORDPRESS_DEFAULTS, WORDPRESS_SCHEMA


def pytest_configure(config):
    """Register custom markers and isolate the default database location."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )

    # src.db.connection builds its engine at import time; keep the default
    # SQLite file out of the user's data directory.
    if not os.environ.get("DATABASE_URL") and not os.environ.get("CHATROUTER_DATA_DIR"):
        os.environ["CHATROUTER_DATA_DIR"] = tempfile.mkdtemp(prefix="chatrouter-tests-")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database session.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database path.

    Unlike in-memory databases, this persists across connections
    and can be shared by sessions on different threads.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()

    yield path

    os.unlink(path)


# ============================================================================
# Router Fixtures
# ============================================================================


@pytest.fixture
def settings() -> RouterSettings:
    """Router settings with defaults (fail-open, confirmations awaited)."""
    return RouterSettings()


@pytest.fixture
def catalog() -> IntentCatalog:
    """The built-in intent catalog."""
    return default_intent_catalog()


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_agent(db_session: Session) -> Callable[..., Agent]:
    """Factory for agents with healthy telemetry."""

    def _make(
        tenant_id: str = TENANT_ID,
        os: str | None = "ubuntu",
        status: str = AgentStatus.running.value,
        cpu_usage: float | None = 10.0,
        memory_usage: float | None = 40.0,
        disk_usage: float | None = 50.0,
        agent_id: str | None = None,
    ) -> Agent:
        agent = Agent(
            customer_id=tenant_id,
            hostname="web-01",
            os=os,
            status=status,
            cpu_usage=cpu_usage,
            memory_usage=memory_usage,
            disk_usage=disk_usage,
        )
        if agent_id:
            agent.id = agent_id
        db_session.add(agent)
        db_session.commit()
        return agent

    return _make


@pytest.fixture
def make_batch(db_session: Session) -> Callable[..., ScriptBatch]:
    """Factory for script batches with an active version."""

    def _make(
        name: str = "System Monitor",
        tenant_id: str = TENANT_ID,
        os_targets: list[str] | None = None,
        inputs_schema: dict[str, Any] | None = None,
        inputs_defaults: dict[str, Any] | None = None,
        preflight: dict[str, Any] | None = None,
        per_agent_concurrency: int = 1,
        per_tenant_concurrency: int = 10,
        activate: bool = True,
    ) -> ScriptBatch:
        service = BatchService(db_session)
        batch = service.create_batch(
            tenant_id=tenant_id,
            name=name,
            os_targets=os_targets if os_targets is not None else ["ubuntu", "debian"],
            inputs_schema=inputs_schema,
            inputs_defaults=inputs_defaults,
            preflight=preflight,
            per_agent_concurrency=per_agent_concurrency,
            per_tenant_concurrency=per_tenant_concurrency,
        )
        if activate:
            version = service.add_version(batch.id, f"#!/bin/sh\necho {name}\n")
            batch = service.activate_version(batch.id, version.version)
        return batch

    return _make


@pytest.fixture
def make_wordpress_batch(make_batch) -> Callable[..., ScriptBatch]:
    """Factory for the WordPress Installer batch with its inputs schema."""

    def _make(**overrides: Any) -> ScriptBatch:
        kwargs: dict[str, Any] = {
            "name": "WordPress Installer",
            "inputs_schema": WORDPRESS_SCHEMA,
            "inputs_defaults": WORDPRESS_DEFAULTS,
        }
        kwargs.update(overrides)
        return make_batch(**kwargs)

    return _make


@pytest.fixture
def make_policy(db_session: Session) -> Callable[..., CommandPolicy]:
    """Factory for active command policies."""

    def _make(
        mode: str,
        match_value: str,
        match_type: str = "exact",
        policy_name: str | None = None,
        tenant_id: str = TENANT_ID,
        os_whitelist: list[str] | None = None,
        confirm_message: str | None = None,
    ) -> CommandPolicy:
        return create_policy(
            db_session,
            tenant_id=tenant_id,
            policy_name=policy_name or f"{mode}-{match_value}",
            mode=mode,
            match_type=match_type,
            match_value=match_value,
            os_whitelist=os_whitelist,
            confirm_message=confirm_message,
        )

    return _make

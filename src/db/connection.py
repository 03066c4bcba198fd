"""Database connection management for the chat router.

Provides synchronous database access using SQLAlchemy. Supports SQLite for
development with a PostgreSQL path for production.

Usage:
    # FastAPI Depends
    from src.db.connection import get_db, init_db

    init_db()  # Create tables
    db = next(get_db())
    # ... use db session

    # Scripts and the CLI
    from src.db.connection import get_db_context

    with get_db_context() as db:
        ...
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base


# Configuration
def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. CHATROUTER_DB_PATH (converted to sqlite URL)
    3. sqlite:///<data dir>/chatrouter.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("CHATROUTER_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from src.utils.paths import ensure_dirs_exist, get_default_db_path

    ensure_dirs_exist()
    return f"sqlite:///{get_default_db_path()}"


def configure_sqlite_engine(target: Engine) -> None:
    """Make a SQLite engine serialize write transactions.

    pysqlite defers BEGIN until the first write, so two sessions can both
    read a concurrency count before either inserts. Disabling the driver's
    transaction handling and emitting BEGIN IMMEDIATE takes the database
    write lock when the transaction opens, which gives the run dispatcher
    the same guarantee SELECT ... FOR UPDATE gives on PostgreSQL.

    Args:
        target: Engine bound to a SQLite database. Other dialects are left
            untouched.
    """
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    @event.listens_for(target, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# Engine creation
DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)
configure_sqlite_engine(engine)


# Session factories
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


# Dependency functions for FastAPI


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for request-scoped use.

    Intended for use with FastAPI's Depends().

    Usage:
        @router.get("/runs/{run_id}")
        def get_run(run_id: str, db: Session = Depends(get_db)):
            return db.get(BatchRun, run_id)

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Context managers for manual session management


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            run = db.query(BatchRun).first()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Initialization functions


def init_db() -> None:
    """Create all database tables.

    Uses the Base.metadata from models.py to create all defined tables.
    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)


# Cleanup functions


def close_db() -> None:
    """Close the engine and dispose of connection pool."""
    engine.dispose()

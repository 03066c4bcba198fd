"""FastAPI application for the chat router API.

Provides the main application instance with routers, middleware,
and exception handlers configured.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from typing import Any

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import agents, chat_router, conversations, runs
from src.config import get_config
from src.db.connection import init_db
from src.errors import ConflictError, NotFoundError, RouterError, ValidationError

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse the comma-separated CORS allowlist.

    ALLOWED_ORIGINS wins over daemon.allowed_origins from the config file.
    """
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        raw = get_config().daemon.allowed_origins.strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    global _startup_time

    _startup_time = _time.time()
    init_db()
    router_settings = get_config().router
    if router_settings.fail_open_policy or router_settings.fail_open_concurrency:
        logger.warning(
            "Router runs fail-open (policy=%s, concurrency=%s): lookup errors "
            "let requests through.",
            router_settings.fail_open_policy,
            router_settings.fail_open_concurrency,
        )
    yield


app = FastAPI(
    title="Chat Router API",
    description="Conversational command router for managed agents",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins = _parse_allowed_origins()
if allowed_origins:
    wildcard = "*" in allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else allowed_origins,
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.exception_handler(RouterError)
async def router_error_handler(request: Request, exc: RouterError) -> JSONResponse:
    """Handle RouterError exceptions with consistent format.

    Args:
        request: The incoming request.
        exc: The RouterError exception.

    Returns:
        JSONResponse with error details.
    """
    return JSONResponse(
        status_code=400,
        content={
            "error_code": exc.code,
            "message": exc.message,
            "remediation": exc.remediation,
            "details": exc.details if exc.details else None,
        },
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: never leak internals to the client."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"state": "done", "message": "An error occurred processing your request."},
    )


# Include routers
app.include_router(chat_router.router)
app.include_router(conversations.router, prefix="/api/v1")
app.include_router(runs.router, prefix="/api/v1")
app.include_router(agents.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        Dictionary with status, version and uptime.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("chatrouter")
    except PackageNotFoundError:
        version = "unknown"
    return {"status": "healthy", "version": version, "uptime_seconds": uptime}


@app.get("/readyz")
def readiness_check():
    """Dependency-aware readiness check for local/container deployments."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from src.db.connection import get_db_context

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    checks: dict[str, dict[str, Any]] = {}

    # DB connectivity gate.
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except SQLAlchemyError as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "uptime_seconds": uptime,
                "checks": {
                    "database": {"status": "error", "message": str(exc)},
                },
            },
        )

    return {"status": "ready", "uptime_seconds": uptime, "checks": checks}
